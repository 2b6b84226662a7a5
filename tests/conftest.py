import itertools
import threading
import time

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from channel_relay.models import DownloadStatus, init_db
from channel_relay.store import ChannelStore
from channel_relay.supervisor import RelaySupervisor

_pids = itertools.count(4000)

class FakeProcess:
    """Stands in for an ffmpeg Popen: scripted stderr, then an exit code."""

    def __init__(self, args, lines=(), returncode=None):
        self.args = args
        self.pid = next(_pids)
        self.returncode = None
        self.killed = False
        self._lines = list(lines)
        self._exit_code = returncode
        self._released = threading.Event()
        if returncode is not None:
            self._released.set()
        self.stderr = self._stream()

    def _stream(self):
        for line in self._lines:
            yield line + "\n"
        # ffmpeg keeps stderr open for as long as it runs
        self._released.wait(5)

    def finish(self, code=0):
        self._exit_code = code
        self._released.set()

    def kill(self):
        self.killed = True
        self._exit_code = -9
        self._released.set()

    def wait(self, timeout=None):
        self._released.wait(5)
        self.returncode = 0 if self._exit_code is None else self._exit_code
        return self.returncode

    def poll(self):
        return self.returncode

class FakePopen:
    """Popen replacement; configure ``lines``/``returncode`` before a start."""

    def __init__(self):
        self.processes = []
        self.lines = []
        self.returncode = None
        self.error = None

    def __call__(self, args, **kwargs):
        if self.error is not None:
            raise self.error
        process = FakeProcess(args, lines=self.lines, returncode=self.returncode)
        self.processes.append(process)
        return process

@pytest.fixture()
def store(tmp_path):
    engine = create_engine(
        f"sqlite:///{tmp_path / 'channels.db'}",
        connect_args={"check_same_thread": False},
    )
    init_db(bind=engine)
    factory = sessionmaker(autocommit=False, autoflush=False, expire_on_commit=False, bind=engine)
    yield ChannelStore(factory)
    engine.dispose()

@pytest.fixture()
def make_channel(store, tmp_path):
    """Create a channel; ``ready=True`` also writes a source video for it."""

    def _make(name="Lobby", ready=False, **fields):
        values = {
            "name": name,
            "rtmp_url": "rtmp://live.example.com/app",
            "rtmp_key": "live_secretkey123",
        }
        if ready:
            video = tmp_path / f"{name.lower().replace(' ', '_')}.mp4"
            video.write_bytes(b"\x00\x00\x00\x18ftypmp42")
            values["video_source_path"] = str(video)
            values["download_status"] = DownloadStatus.READY.value
        values.update(fields)
        return store.insert(**values)

    return _make

@pytest.fixture()
def fake_popen():
    popen = FakePopen()
    yield popen
    for process in popen.processes:
        process.kill()

@pytest.fixture()
def supervisor(store, fake_popen):
    return RelaySupervisor(store, ffmpeg_path="ffmpeg", log_size=50, popen=fake_popen)

@pytest.fixture()
def drain(supervisor):
    """Apply supervisor events until ``predicate()`` holds or time runs out."""

    def _drain(predicate, timeout=3.0):
        deadline = time.monotonic() + timeout
        while time.monotonic() < deadline:
            supervisor.process_events(timeout=0.05)
            if predicate():
                return True
        return predicate()

    return _drain

def wait_for(predicate, timeout=3.0):
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(0.02)
    return predicate()

@pytest.fixture()
def wait():
    return wait_for
