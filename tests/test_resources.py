from unittest.mock import MagicMock

import pytest

from stackman.exceptions import (
    ApiError,
    CleanupError,
    EmptySourceError,
    PreconditionError,
    UploadError,
)
from stackman.models import ImageResource, VolumeResource
from stackman.resources import (
    create_volume,
    delete_image,
    delete_port,
    delete_vm,
    delete_volume,
    guess_disk_format,
    upload_image,
)


@pytest.fixture
def image_file(tmp_path):
    path = tmp_path / 'Rocky-9.QCOW2'
    path.write_bytes(b'Q' * 2048)
    return path


@pytest.fixture
def cloud(session):
    session.images.create_image.return_value = ImageResource(id='img-1', name='rocky9', status='queued')
    session.images.get_image.return_value = ImageResource(id='img-1', name='rocky9', status='queued')
    session.images.file_url.return_value = 'https://cloud.example.com:9292/v2/images/img-1/file'
    return session


class TestGuessDiskFormat:

    @pytest.mark.parametrize('path, expected', [
        ('disk.qcow2', 'qcow2'),
        ('disk.RAW', 'raw'),
        ('legacy.vmdk', 'vmdk'),
        ('install.iso', 'iso'),
    ])
    def test_from_the_extension(self, path, expected):
        assert guess_disk_format(path) == expected

    def test_explicit_format_wins(self):
        assert guess_disk_format('disk.img', 'raw') == 'raw'

    def test_unknown_extension(self):
        with pytest.raises(PreconditionError, match="must specify --format"):
            guess_disk_format('disk.img')

    def test_unknown_format(self):
        with pytest.raises(PreconditionError, match="must be one of"):
            guess_disk_format('disk.qcow2', 'vhd')


class TestUploadImage:

    def test_creates_and_uploads(self, cloud, image_file, sleep):
        channel = MagicMock(name='upload_channel')

        image = upload_image(cloud, 'rocky9', str(image_file), upload_channel=channel, sleep=sleep)

        cloud.images.create_image.assert_called_once_with(
            'rocky9', disk_format='qcow2', container_format='bare', visibility='shared')
        url, token, _, size = channel.upload.call_args[0]
        assert url == 'https://cloud.example.com:9292/v2/images/img-1/file'
        assert token == 'tok-123'
        assert size == 2048
        assert image.id == 'img-1'
        cloud.images.delete_image.assert_not_called()

    def test_missing_file(self, cloud, tmp_path):
        with pytest.raises(PreconditionError, match="does not exist"):
            upload_image(cloud, 'rocky9', str(tmp_path / 'missing.qcow2'))
        cloud.images.create_image.assert_not_called()

    def test_empty_file(self, cloud, tmp_path):
        path = tmp_path / 'empty.raw'
        path.write_bytes(b'')

        with pytest.raises(EmptySourceError):
            upload_image(cloud, 'empty', str(path))
        cloud.images.create_image.assert_not_called()

    def test_failed_upload_deletes_the_image(self, cloud, image_file, sleep):
        channel = MagicMock(name='upload_channel')
        channel.upload.side_effect = UploadError("upload failed with status 500", 500, 'oops')

        with pytest.raises(UploadError):
            upload_image(cloud, 'rocky9', str(image_file), upload_channel=channel, sleep=sleep)

        cloud.images.delete_image.assert_called_once_with('img-1')

    def test_failed_cleanup_keeps_the_upload_error(self, cloud, image_file, sleep):
        primary = UploadError("upload failed with status 500", 500, 'oops')
        channel = MagicMock(name='upload_channel')
        channel.upload.side_effect = primary
        cloud.images.delete_image.side_effect = ApiError("delete image failed", status_code=500)

        with pytest.raises(CleanupError, match="failed to delete image img-1") as exc_info:
            upload_image(cloud, 'rocky9', str(image_file), upload_channel=channel, sleep=sleep)

        assert exc_info.value.primary_error is primary


class TestCreateVolume:

    def test_configured_type_by_default(self, cloud):
        cloud.settings = cloud.settings.override(volume_type='replica3')
        cloud.volumes.create_volume.return_value = VolumeResource(
            id='vol-1', name='data1', size=100, status='creating')

        volume = create_volume(cloud, 'data1', 100, description='scratch')

        cloud.volumes.create_volume.assert_called_once_with(
            name='data1', size=100, description='scratch', volume_type='replica3')
        assert volume.id == 'vol-1'

    def test_size_must_be_positive(self, cloud):
        with pytest.raises(PreconditionError, match="at least 1 GiB"):
            create_volume(cloud, 'data1', 0)
        cloud.volumes.create_volume.assert_not_called()


class TestDelete:

    def test_vm_by_name(self, cloud):
        cloud.compute.resolve_server_id.return_value = 'vm-1'

        assert delete_vm(cloud, 'web1') == 'vm-1'
        cloud.compute.delete_server.assert_called_once_with('vm-1')

    def test_unresolved_vm_is_deleted_as_is(self, cloud):
        cloud.compute.resolve_server_id.side_effect = PreconditionError("no server found")

        delete_vm(cloud, 'vm-uuid')

        cloud.compute.delete_server.assert_called_once_with('vm-uuid')

    def test_image_name_must_resolve(self, cloud):
        cloud.images.resolve_image_id.side_effect = PreconditionError("no image found matching 'x'")

        with pytest.raises(PreconditionError):
            delete_image(cloud, 'x')
        cloud.images.delete_image.assert_not_called()

    def test_volume(self, cloud):
        cloud.volumes.resolve_volume_id.return_value = 'vol-1'

        delete_volume(cloud, 'data1')

        cloud.volumes.delete_volume.assert_called_once_with('vol-1')

    def test_port(self, cloud):
        delete_port(cloud, 'port-1')
        cloud.network.delete_port.assert_called_once_with('port-1')
