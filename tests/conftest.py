import json
import stat
import sys
import pytest
import yaml
from pathlib import Path
from ffwatch.config.models import AppConfig
from ffwatch.domain.events import Event
from ffwatch.infrastructure.event_bus import EventBus

# ============================================================================
# Configuration Fixtures
# ============================================================================

@pytest.fixture
def sample_config():
    """Returns an AppConfig tuned for fast tests (no backoff, no GPU query)."""
    return AppConfig(
        general={
            "ffmpeg_path": "ffmpeg",
            "telemetry": "json",
            "debug": False,
        },
        watch={
            "max_stall": 1000,
            "max_dup": 0,
            "status_interval_s": 3.0,
            "outputs": 1,
        },
        retry={
            "max_retry": 3,
            "strict_errors": False,
            "max_extra_hw_frames": 64,
            "backoff_s": 0.0,
        },
        gpu={
            "enabled": False,
        },
    )

@pytest.fixture
def config_yaml_path(tmp_path):
    """Creates a temporary YAML config file."""
    conf_dir = tmp_path / "conf"
    conf_dir.mkdir()
    conf_file = conf_dir / "ffwatch.yaml"

    content = {
        'general': {
            'telemetry': 'console',
            'debug': True,
        },
        'watch': {
            'max_stall': 50,
            'max_dup': 200,
            'status_interval_s': 1.5,
            'target_duration': 120.0,
            'outputs': 2,
        },
        'retry': {
            'max_retry': 5,
            'strict_errors': True,
        },
        'gpu': {
            'enabled': False,
        },
    }

    with open(conf_file, 'w') as f:
        yaml.dump(content, f)

    return conf_file

# ============================================================================
# EventBus Fixtures
# ============================================================================

@pytest.fixture
def event_bus():
    """Returns a fresh EventBus instance."""
    return EventBus()

@pytest.fixture
def recorded_events(event_bus):
    """Every event published on `event_bus`, in order."""
    events = []
    event_bus.subscribe(Event, events.append)
    return events

# ============================================================================
# Fake ffmpeg executable (for integration tests)
# ============================================================================

FAKE_FFMPEG_SOURCE = '''\
import json
import os
import sys
import time

plan_path = os.environ["FAKE_FFMPEG_PLAN"]
with open(plan_path) as f:
    plan = json.load(f)

counter_path = plan_path + ".count"
attempt = 0
if os.path.exists(counter_path):
    with open(counter_path) as f:
        attempt = int(f.read() or 0)
with open(counter_path, "w") as f:
    f.write(str(attempt + 1))

with open(plan_path + ".argv", "a") as f:
    f.write(json.dumps(sys.argv[1:]) + "\\n")

step = plan["attempts"][min(attempt, len(plan["attempts"]) - 1)]
for _ in range(step.get("repeat", 1)):
    for chunk in step["stderr"]:
        sys.stderr.buffer.write(chunk.encode())
        sys.stderr.buffer.flush()
        time.sleep(step.get("delay", 0))
sys.exit(step.get("exit", 0))
'''

@pytest.fixture
def fake_ffmpeg(tmp_path, monkeypatch):
    """Factory writing an executable that replays scripted ffmpeg stderr.

    Each entry of `attempts` is {"stderr": [chunks], "exit": code,
    "delay": seconds between chunks, "repeat": n}. Attempt N of a run uses
    entry N (the last entry repeats). Returns (executable, argv_log_path).
    """
    def _factory(attempts):
        plan_path = tmp_path / "plan.json"
        plan_path.write_text(json.dumps({"attempts": attempts}))
        monkeypatch.setenv("FAKE_FFMPEG_PLAN", str(plan_path))

        script = tmp_path / "ffmpeg"
        script.write_text(f"#!{sys.executable}\n" + FAKE_FFMPEG_SOURCE)
        script.chmod(script.stat().st_mode | stat.S_IXUSR | stat.S_IXGRP | stat.S_IXOTH)
        return script, Path(str(plan_path) + ".argv")

    return _factory

# ============================================================================
# Markers
# ============================================================================

def pytest_configure(config):
    """Register custom markers."""
    config.addinivalue_line(
        "markers", "integration: marks tests as integration tests"
    )
    config.addinivalue_line(
        "markers", "unit: marks tests as unit tests"
    )
