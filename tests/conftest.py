import json
from pathlib import Path
from typing import Callable, Iterable, Optional, Sequence

import jwt
import pytest
from fastapi.testclient import TestClient
from PIL import Image

from mediagate.core.config import get_settings
from mediagate.core.errors import ToolFailed, ToolMissing, ToolTimeout
from mediagate.main import create_app
from mediagate.media.runner import ToolResult


class FakeRunner:
    """Stands in for external binaries: records argv and writes plausible outputs."""

    def __init__(
        self,
        *,
        missing: Iterable[str] = (),
        failing: Iterable[str] = (),
        timing_out: Iterable[str] = (),
        fail_if: Optional[Callable[[Sequence[str]], bool]] = None,
        empty_output: Iterable[str] = (),
    ):
        self.calls: list[list[str]] = []
        self.missing = set(missing)
        self.failing = set(failing)
        self.timing_out = set(timing_out)
        self.fail_if = fail_if
        self.empty_output = set(empty_output)

    async def __call__(
        self,
        argv,
        *,
        tool,
        timeout_s,
        stderr_limit=4096,
        signatures=(),
        install_hint=None,
        job=None,
    ):
        self.calls.append(list(argv))
        if tool in self.missing:
            raise ToolMissing(tool, f"{tool} is not installed or not executable", remediation=install_hint)
        if tool in self.timing_out:
            raise ToolTimeout(tool, timeout_s)
        if tool in self.failing or (self.fail_if is not None and self.fail_if(argv)):
            raise ToolFailed(tool, f"{tool} exited with code 1", returncode=1, stderr="simulated failure")
        if job is not None and job.output_path is not None:
            self._write_output(tool, Path(job.output_path))
        return ToolResult(tool=tool, returncode=0, stdout=b"", stderr="", duration_s=0.0)

    def calls_for(self, tool: str) -> list[list[str]]:
        return [call for call in self.calls if call[0] == tool]

    def _write_output(self, tool: str, output: Path) -> None:
        output.parent.mkdir(parents=True, exist_ok=True)
        if tool in self.empty_output:
            output.write_bytes(b"")
            return
        suffix = output.suffix.lower()
        if suffix in (".jpg", ".jpeg"):
            Image.new("RGB", (120, 80), (200, 40, 40)).save(output, format="JPEG")
        elif suffix == ".gltf":
            document = {"asset": {"version": "2.0"}, "buffers": [{"uri": "output.bin", "byteLength": 4}]}
            output.write_text(json.dumps(document))
            output.with_suffix(".bin").write_bytes(b"\x00\x01\x02\x03")
        else:
            output.write_bytes(f"{tool}-output".encode())


@pytest.fixture(autouse=True)
def configure_environment(monkeypatch, tmp_path):
    storage_root = tmp_path / "storage"
    cache_root = tmp_path / "cache"
    storage_root.mkdir()

    monkeypatch.setenv("MEDIAGATE_ENVIRONMENT", "test")
    monkeypatch.setenv("MEDIAGATE_LOG_LEVEL", "debug")
    monkeypatch.setenv("MEDIAGATE_STORAGE_ROOT", str(storage_root))
    monkeypatch.setenv("MEDIAGATE_CACHE_ROOT", str(cache_root))
    monkeypatch.setenv("MEDIAGATE_JWT_SECRET", "test-secret")
    monkeypatch.setenv("MEDIAGATE_JWT_ISSUER", "mediagate-test")
    monkeypatch.setenv("MEDIAGATE_JWT_AUDIENCE", "mediagate")

    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


@pytest.fixture()
def settings(configure_environment):
    return get_settings()


@pytest.fixture()
def storage_root(settings) -> Path:
    return Path(settings.storage_root)


@pytest.fixture()
def fake_runner() -> FakeRunner:
    return FakeRunner()


@pytest.fixture()
def client(configure_environment, fake_runner):
    app = create_app(runner=fake_runner)
    with TestClient(app) as client:
        yield client


def build_token(user_id: str | None, *, scopes: list[str] | None = None, root_access: bool = False) -> str:
    payload: dict[str, object] = {"iss": "mediagate-test", "aud": "mediagate"}
    if user_id:
        payload["sub"] = user_id
    if scopes:
        payload["scopes"] = scopes
    if root_access:
        payload["root_access"] = True
    return jwt.encode(payload, "test-secret", algorithm="HS256")


@pytest.fixture()
def user_headers() -> dict[str, str]:
    return {"Authorization": f"Bearer {build_token('42')}"}


@pytest.fixture()
def root_headers() -> dict[str, str]:
    return {"Authorization": f"Bearer {build_token('1', scopes=['root'])}"}


def place_file(root: Path, relative: str, data: bytes) -> Path:
    target = root / relative
    target.parent.mkdir(parents=True, exist_ok=True)
    target.write_bytes(data)
    return target


def place_image(root: Path, relative: str, size=(640, 480), color=(10, 120, 200), fmt: str = "PNG") -> Path:
    target = root / relative
    target.parent.mkdir(parents=True, exist_ok=True)
    Image.new("RGB", size, color).save(target, format=fmt)
    return target
