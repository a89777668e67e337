import io
import json
import os
import pytest
from moto import mock_aws
from fastapi.testclient import TestClient
from PIL import Image

# Dummy AWS credentials for moto, set BEFORE importing app modules
os.environ["AWS_ACCESS_KEY_ID"] = "testing"
os.environ["AWS_SECRET_ACCESS_KEY"] = "testing"
os.environ["AWS_SECURITY_TOKEN"] = "testing"
os.environ["AWS_SESSION_TOKEN"] = "testing"
os.environ["AWS_REGION"] = "us-east-1"
os.environ["S3_BUCKET"] = "image-server-bucket"
os.environ["DYNAMODB_TABLE"] = "Images"
# Clear the AWS_ENDPOINT_URL so moto mocks are used instead of localstack
os.environ.pop("AWS_ENDPOINT_URL", None)

from image_server.main import app
from image_server.settings import settings
from image_server.storage.s3 import S3Service
from image_server.storage.dynamodb import DynamoDBService
from image_server.storage.store import ImageStore

TEST_CONFIG = {
    "allowedEntries": [
        {"name": "45x35", "width": 45, "height": 35, "type": "resize"},
        {"name": "50x40", "width": 50, "height": 40, "type": "crop"},
        {"name": "50x50", "width": 50, "height": 50, "type": "crop"},
        {"name": "130x260", "width": 130, "height": 260, "type": "fit"},
        {"name": "w100", "width": 100},
    ]
}


def make_image_bytes(size=(320, 240), image_format="JPEG", color="red"):
    """Generate a simple valid image in-memory."""
    img = Image.new("RGB", size, color=color)
    buf = io.BytesIO()
    img.save(buf, format=image_format)
    return buf.getvalue()


def make_mpo_bytes(size=(320, 240)):
    """Generate a two frame multi-picture jpeg, as phones and cameras write them."""
    frames = [Image.new("RGB", size, color=color) for color in ("red", "blue")]
    buf = io.BytesIO()
    frames[0].save(buf, format="MPO", save_all=True, append_images=frames[1:])
    return buf.getvalue()


@pytest.fixture(scope="function")
def aws_credentials():
    """Mocked AWS Credentials for moto."""
    os.environ["AWS_ACCESS_KEY_ID"] = "testing"
    os.environ["AWS_SECRET_ACCESS_KEY"] = "testing"
    os.environ["AWS_SECURITY_TOKEN"] = "testing"
    os.environ["AWS_SESSION_TOKEN"] = "testing"


@pytest.fixture(scope="function")
def size_config_file(tmp_path):
    path = tmp_path / "configuration.json"
    path.write_text(json.dumps(TEST_CONFIG))
    return str(path)


@pytest.fixture(scope="function")
def store(aws_credentials):
    with mock_aws():
        yield ImageStore(S3Service(), DynamoDBService())


@pytest.fixture(scope="function")
def test_client(aws_credentials, size_config_file, monkeypatch):
    monkeypatch.setattr(settings, "image_config_path", size_config_file)
    # face detection is covered separately with a fake detector
    monkeypatch.setattr(settings, "smartcrop_enabled", False)
    monkeypatch.setattr(settings, "converter_binary", "")

    with mock_aws():
        # the lifespan creates the bucket and table inside the moto context
        with TestClient(app) as client:
            yield client


@pytest.fixture(scope="function")
def app_store(test_client):
    return app.state.store
