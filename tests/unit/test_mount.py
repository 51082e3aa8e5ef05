"""
Unit tests for mount module.
"""

from unittest.mock import MagicMock

import pytest

from rbd_volume.cli.lib.mount import SubprocessMountExecutor
from rbd_volume.exceptions import MountFailed, UnmountFailed


class TestMount:
    """Tests for SubprocessMountExecutor.mount."""

    @pytest.mark.unit
    def test_mount_new_filesystem(self, mock_subprocess):
        """Test mounting a new filesystem."""
        mock_subprocess.side_effect = [
            MagicMock(returncode=1),  # mountpoint (not mounted)
            MagicMock(returncode=0),  # mount
        ]

        SubprocessMountExecutor().mount("/dev/rbd0", "/mnt/volumes/abc")

        mock_subprocess.assert_any_call(
            ["mount", "/dev/rbd0", "/mnt/volumes/abc"],
            capture_output=True,
            text=True,
            check=False,
        )

    @pytest.mark.unit
    def test_mount_with_type_and_options(self, mock_subprocess):
        """Test configured filesystem type and options are passed on."""
        mock_subprocess.side_effect = [
            MagicMock(returncode=1),  # mountpoint (not mounted)
            MagicMock(returncode=0),  # mount
        ]

        SubprocessMountExecutor(fs_type="xfs", options="noatime").mount("/dev/rbd0", "/mnt/volumes/abc")

        mock_subprocess.assert_any_call(
            ["mount", "-t", "xfs", "-o", "noatime", "/dev/rbd0", "/mnt/volumes/abc"],
            capture_output=True,
            text=True,
            check=False,
        )

    @pytest.mark.unit
    def test_mount_already_mounted(self, mock_subprocess):
        """Test mounting filesystem that's already mounted."""
        mock_subprocess.return_value = MagicMock(returncode=0)  # mountpoint (mounted)

        # Should not raise error, just skip
        SubprocessMountExecutor().mount("/dev/rbd0", "/mnt/volumes/abc")

        assert mock_subprocess.call_count == 1

    @pytest.mark.unit
    def test_mount_fails(self, mock_subprocess):
        """Test mounting fails."""
        mock_subprocess.side_effect = [
            MagicMock(returncode=1),  # mountpoint (not mounted)
            MagicMock(returncode=32, stderr="wrong fs type\n"),  # mount fails
        ]

        with pytest.raises(MountFailed, match="wrong fs type"):
            SubprocessMountExecutor().mount("/dev/rbd0", "/mnt/volumes/abc")


class TestUnmount:
    """Tests for SubprocessMountExecutor.unmount."""

    @pytest.mark.unit
    def test_umount_mounted_filesystem(self, mock_subprocess):
        """Test unmounting a mounted filesystem."""
        mock_subprocess.side_effect = [
            MagicMock(returncode=0),  # mountpoint (mounted)
            MagicMock(returncode=0),  # umount
        ]

        SubprocessMountExecutor().unmount("/mnt/volumes/abc")

        mock_subprocess.assert_any_call(
            ["umount", "/mnt/volumes/abc"], capture_output=True, text=True, check=False
        )

    @pytest.mark.unit
    def test_umount_not_mounted(self, mock_subprocess):
        """Test unmounting filesystem that's not mounted."""
        mock_subprocess.return_value = MagicMock(returncode=1)  # mountpoint (not mounted)

        # Should not raise error, just skip
        SubprocessMountExecutor().unmount("/mnt/volumes/abc")

        assert mock_subprocess.call_count == 1

    @pytest.mark.unit
    def test_umount_fails(self, mock_subprocess):
        """Test unmounting fails."""
        mock_subprocess.side_effect = [
            MagicMock(returncode=0),  # mountpoint (mounted)
            MagicMock(returncode=1, stderr="target is busy"),  # umount fails
        ]

        with pytest.raises(UnmountFailed, match="target is busy"):
            SubprocessMountExecutor().unmount("/mnt/volumes/abc")

    @pytest.mark.unit
    def test_umount_fails_without_stderr(self, mock_subprocess):
        """Test exit status is reported when umount prints nothing."""
        mock_subprocess.side_effect = [
            MagicMock(returncode=0),  # mountpoint (mounted)
            MagicMock(returncode=16, stderr=""),  # umount fails
        ]

        with pytest.raises(UnmountFailed, match="exit status 16"):
            SubprocessMountExecutor().unmount("/mnt/volumes/abc")


class TestIsMounted:
    """Tests for SubprocessMountExecutor.is_mounted."""

    @pytest.mark.unit
    def test_is_mounted(self, mock_subprocess):
        mock_subprocess.return_value = MagicMock(returncode=0)

        assert SubprocessMountExecutor().is_mounted("/mnt/volumes/abc") is True
        mock_subprocess.assert_called_once_with(
            ["mountpoint", "-q", "/mnt/volumes/abc"], capture_output=True, text=True, check=False
        )

    @pytest.mark.unit
    def test_is_not_mounted(self, mock_subprocess):
        mock_subprocess.return_value = MagicMock(returncode=32)

        assert SubprocessMountExecutor().is_mounted("/mnt/volumes/abc") is False
