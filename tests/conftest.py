# Test configuration

from io import BytesIO
from typing import Optional, Tuple

import pytest
from PIL import Image
from PIL.TiffImagePlugin import IFDRational

from memorygrove.catalog.database import create_db_engine, create_session_factory, init_db
from memorygrove.catalog.models import Memory
from memorygrove.config.settings import Settings
from memorygrove.storage import FilesystemStorage


@pytest.fixture
def test_settings(tmp_path):
    """Settings pointing every path at a per-test temp directory"""
    return Settings(
        _env_file=None,
        database_url=f"sqlite:///{tmp_path / 'catalog.db'}",
        media_path=str(tmp_path / "media"),
        queue_path=str(tmp_path / "queue"),
        queue_concurrency=2,
        queue_poll_interval_ms=20,
        vision_enabled=False,
        geocoding_enabled=False,
        log_json=False,
    )


@pytest.fixture
def db_engine(test_settings):
    engine = create_db_engine(settings=test_settings)
    init_db(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(db_engine):
    return create_session_factory(db_engine)


@pytest.fixture
def db_session(session_factory):
    session = session_factory()
    yield session
    session.close()


@pytest.fixture
def storage(test_settings):
    return FilesystemStorage(test_settings.media_path)


@pytest.fixture
def memory_factory(session_factory):
    """Create a memory row and return its id"""
    def _create(context_id: int = 1, title: str = "Trip") -> int:
        with session_factory() as session:
            memory = Memory(context_id=context_id, title=title)
            session.add(memory)
            session.commit()
            return memory.id
    return _create


def _to_rational(value: float) -> Tuple[IFDRational, IFDRational, IFDRational]:
    degrees = int(value)
    minutes_float = (value - degrees) * 60
    minutes = int(minutes_float)
    seconds = round((minutes_float - minutes) * 60 * 100)
    return IFDRational(degrees, 1), IFDRational(minutes, 1), IFDRational(seconds, 100)


def make_jpeg(
    taken_at: Optional[str] = None,
    gps: Optional[Tuple[float, float]] = None,
    size: Tuple[int, int] = (640, 480),
    color: Tuple[int, int, int] = (40, 120, 200),
    orientation: Optional[int] = None,
    gps_ifd: Optional[dict] = None,
) -> bytes:
    """
    Build a JPEG with optional EXIF capture time, GPS and orientation.

    taken_at uses the EXIF format, e.g. "2024:06:01 12:30:00". gps_ifd
    writes raw GPS tags as given, overriding gps.
    """
    image = Image.new("RGB", size, color)
    exif = Image.Exif()
    if taken_at:
        exif[0x8769] = {36867: taken_at}
    if gps:
        latitude, longitude = gps
        exif[0x8825] = {
            1: "N" if latitude >= 0 else "S",
            2: _to_rational(abs(latitude)),
            3: "E" if longitude >= 0 else "W",
            4: _to_rational(abs(longitude)),
        }
    if gps_ifd is not None:
        exif[0x8825] = gps_ifd
    if orientation:
        exif[0x0112] = orientation

    buffer = BytesIO()
    image.save(buffer, format="JPEG", exif=exif.tobytes())
    return buffer.getvalue()


@pytest.fixture
def jpeg_factory():
    return make_jpeg


@pytest.fixture
def upload_factory(tmp_path):
    """Write bytes to a temporary upload file and return its path"""
    upload_dir = tmp_path / "uploads"
    upload_dir.mkdir(exist_ok=True)

    def _write(content: bytes, name: str = "photo.jpg") -> str:
        path = upload_dir / name
        path.write_bytes(content)
        return str(path)
    return _write
