# Copyright (c) 2026 Pyry Haulos
#
# This software is released under the MIT License.
# https://opensource.org/licenses/MIT

"""Tests for the dotenv loader."""

from pathlib import Path
from unittest.mock import MagicMock, call, patch

from mailbot.dotenv_loader import load_dotenv_once, reset_dotenv_state


class TestLoadDotenvOnce:
    """Tests for load_dotenv_once."""

    def setup_method(self) -> None:
        reset_dotenv_state()

    def _patched(self, xdg_env: Path, cwd: Path, mock_ld: MagicMock):
        return (
            patch("mailbot.dotenv_loader.load_dotenv", mock_ld),
            patch("mailbot.config.get_dotenv_path", return_value=xdg_env),
            patch("mailbot.dotenv_loader.Path.cwd", return_value=cwd),
        )

    def test_idempotent(self, tmp_path: Path) -> None:
        """Second call is a no-op."""
        xdg_env = tmp_path / ".env"
        xdg_env.touch()
        mock_ld = MagicMock()
        ld, path, cwd = self._patched(xdg_env, tmp_path / "none", mock_ld)
        with ld, path, cwd:
            load_dotenv_once()
            load_dotenv_once()

        assert mock_ld.call_count == 1

    def test_loads_xdg_then_cwd(self, tmp_path: Path) -> None:
        xdg_env = tmp_path / "config" / ".env"
        xdg_env.parent.mkdir()
        xdg_env.touch()
        cwd_env = tmp_path / "cwd" / ".env"
        cwd_env.parent.mkdir()
        cwd_env.touch()
        mock_ld = MagicMock()
        ld, path, cwd = self._patched(xdg_env, cwd_env.parent, mock_ld)
        with ld, path, cwd:
            load_dotenv_once()

        assert mock_ld.call_args_list == [call(xdg_env), call(cwd_env)]

    def test_no_env_files(self, tmp_path: Path) -> None:
        """No-op when neither .env file exists."""
        mock_ld = MagicMock()
        ld, path, cwd = self._patched(
            tmp_path / "missing" / ".env", tmp_path / "also_missing", mock_ld
        )
        with ld, path, cwd:
            load_dotenv_once()

        mock_ld.assert_not_called()

    def test_reset_allows_reload(self, tmp_path: Path) -> None:
        xdg_env = tmp_path / ".env"
        xdg_env.touch()
        mock_ld = MagicMock()
        ld, path, cwd = self._patched(xdg_env, tmp_path / "none", mock_ld)
        with ld, path, cwd:
            load_dotenv_once()
            reset_dotenv_state()
            load_dotenv_once()

        assert mock_ld.call_count == 2
