import pytest

from image_server.image_service import service
from image_server.exceptions import InvalidImageException, ImageExistsException

from conftest import make_image_bytes, make_mpo_bytes


# ------------------------------
# validate_image_bytes
# ------------------------------

def test_validate_png_bytes_ok():
    assert service.validate_image_bytes(make_image_bytes((10, 10), "PNG")) == "image/png"


def test_validate_jpeg_bytes_ok():
    assert service.validate_image_bytes(make_image_bytes((10, 10), "JPEG")) == "image/jpeg"


def test_validate_multi_picture_jpeg_ok():
    assert service.validate_image_bytes(make_mpo_bytes((10, 10))) == "image/jpeg"


def test_validate_invalid_bytes_raises():
    with pytest.raises(InvalidImageException):
        service.validate_image_bytes(b"notanimage")


def test_validate_unsupported_type():
    with pytest.raises(InvalidImageException):
        service.validate_image_bytes(make_image_bytes((10, 10), "BMP"))


# ------------------------------
# parse_metadata
# ------------------------------

def test_parse_metadata():
    assert service.parse_metadata(None) == {}
    assert service.parse_metadata('{"license": "MIT"}') == {"license": "MIT"}


@pytest.mark.parametrize("raw", ["{broken", "[1]", '{"n": 1}'])
def test_parse_metadata_invalid(raw):
    with pytest.raises(InvalidImageException):
        service.parse_metadata(raw)


# ------------------------------
# save_original
# ------------------------------

def test_save_original_success(mocker):
    mock_store = mocker.Mock()
    mock_store.is_valid_id.return_value = False
    mock_store.find_image_by_parent_filename.return_value = None

    data = make_image_bytes()
    service.save_original(mock_store, "testdb", "photo.jpg", data, {"license": "MIT"})

    mock_store.create_image.assert_called_once_with("testdb", "photo.jpg", data, "image/jpeg", {"license": "MIT"})


def test_save_original_duplicate(mocker):
    mock_store = mocker.Mock()
    mock_store.is_valid_id.return_value = False
    mock_store.find_image_by_parent_filename.return_value = object()

    with pytest.raises(ImageExistsException):
        service.save_original(mock_store, "testdb", "photo.jpg", make_image_bytes(), {})
    mock_store.create_image.assert_not_called()


def test_save_original_rejects_id_like_names(mocker):
    mock_store = mocker.Mock()
    mock_store.is_valid_id.return_value = True
    with pytest.raises(InvalidImageException):
        service.save_original(mock_store, "testdb", "0b5c1a4e-8a3f-4a57-9d1e-1f2e3d4c5b6a", make_image_bytes(), {})


def test_save_original_invalid_image(mocker):
    mock_store = mocker.Mock()
    mock_store.is_valid_id.return_value = False
    with pytest.raises(InvalidImageException):
        service.save_original(mock_store, "testdb", "photo.jpg", b"notanimage", {})
    mock_store.create_image.assert_not_called()
