import os
import pytest
import stat
import sys
from pathlib import Path

# Ensure src/ is in the python path for imports
src_path = Path(__file__).parent.parent / "src"
sys.path.insert(0, str(src_path))

from mosquitto_turnkey.core.models import TurnkeySettings

# Stand-in for the broker binary. Behaviour is selected with FAKE_MOSQUITTO_MODE.
FAKE_BROKER_BODY = r'''
import os
import signal
import sys
import time

mode = os.environ.get("FAKE_MOSQUITTO_MODE", "ready")

def emit(text):
    sys.stderr.write(text)
    sys.stderr.flush()

def on_term(signum, frame):
    emit("1700000009: mosquitto version 2.0.22 terminating\n")
    sys.exit(0)

if mode in ("stubborn", "wedged"):
    signal.signal(signal.SIGTERM, signal.SIG_IGN)
else:
    signal.signal(signal.SIGTERM, on_term)

sys.stdout.write("argv: " + " ".join(sys.argv[1:]) + "\n")
sys.stdout.flush()

if mode == "crash":
    emit("Error: Unable to open config file.\n")
    sys.exit(3)

emit("1700000000: mosquitto version 2.0.22 starting\n")
if mode in ("ready", "stubborn", "exit"):
    emit("1700000000: mosquitto version 2.0.22 running\n")
elif mode == "split":
    emit("1700000000: mosquitto version 2.0")
    time.sleep(0.3)
    emit(".22 running\n")
elif mode == "late":
    time.sleep(float(os.environ.get("FAKE_MOSQUITTO_DELAY", "1.0")))
    emit("1700000000: mosquitto version 2.0.22 running\n")

if mode == "exit":
    time.sleep(0.3)
    sys.exit(0)

while True:
    time.sleep(0.05)
'''

# Stand-in for mosquitto_passwd: -H <alg> -b [-c] <file> <user> <password>
FAKE_PASSWD_BODY = r'''
import os
import sys

def run_passwd(args):
    args = list(args)
    algorithm = args[args.index("-H") + 1]
    create = "-c" in args
    filename, username, password = args[-3:]
    if username == os.environ.get("FAKE_PASSWD_FAIL_USER"):
        sys.stderr.write("Error: cannot hash password\n")
        return 1
    with open(filename, "w" if create else "a") as handle:
        handle.write(f"{username}:$7$101${algorithm}${len(password)}\n")
    return 0

if __name__ == "__main__":
    sys.exit(run_passwd(sys.argv[1:]))
'''

# Stand-in for the container runtime. `run` of the image starts the broker as a
# detached "container" in its own session (pid recorded under containers/<name>.pid)
# and forwards SIGTERM to it; SIGKILL of the client leaves it running.
# `rm -f <name>` kills the recorded container.
FAKE_DOCKER_BODY = r'''
import os
import signal
import subprocess
import sys

here = os.path.dirname(os.path.abspath(__file__))
containers = os.path.join(here, "containers")
args = sys.argv[1:]
log_file = os.environ.get("FAKE_DOCKER_LOG")
if log_file:
    with open(log_file, "a") as handle:
        handle.write(" ".join(args) + "\n")

if args[:2] == ["rm", "-f"]:
    pid_file = os.path.join(containers, args[2] + ".pid")
    if not os.path.exists(pid_file):
        sys.stderr.write(f"Error: No such container: {args[2]}\n")
        sys.exit(1)
    try:
        os.kill(int(open(pid_file).read()), signal.SIGKILL)
    except ProcessLookupError:
        pass
    sys.exit(0)

name = args[args.index("--name") + 1]
mount = args[args.index("-v") + 1]
host_dir, container_dir = mount.split(":", 1)

if "mosquitto_passwd" in args:
    rest = args[args.index("mosquitto_passwd") + 1:]
    rest = [part.replace(container_dir, host_dir, 1) if part.startswith(container_dir) else part for part in rest]
    sys.path.insert(0, here)
    from fake_passwd import run_passwd
    sys.exit(run_passwd(rest))

container = subprocess.Popen(
    [sys.executable, os.path.join(here, "fake_broker.py"), "-c", os.path.join(host_dir, "mosquitto.conf")],
    start_new_session=True,
)
os.makedirs(containers, exist_ok=True)
with open(os.path.join(containers, name + ".pid"), "w") as handle:
    handle.write(str(container.pid))

signal.signal(signal.SIGTERM, lambda signum, frame: container.send_signal(signal.SIGTERM))
code = container.wait()
sys.exit(code if code >= 0 else 128 - code)
'''


def _write_program(path: Path, body: str) -> Path:
    path.write_text(f"#!{sys.executable}\n{body}")
    path.chmod(path.stat().st_mode | stat.S_IXUSR | stat.S_IXGRP | stat.S_IXOTH)
    return path


@pytest.fixture
def fake_bin(tmp_path, monkeypatch):
    """
    Directory holding fake mosquitto, mosquitto_passwd and docker executables,
    placed first on PATH.
    """
    bin_dir = tmp_path / "bin"
    bin_dir.mkdir()

    _write_program(bin_dir / "mosquitto", FAKE_BROKER_BODY)
    _write_program(bin_dir / "mosquitto_passwd", FAKE_PASSWD_BODY)
    _write_program(bin_dir / "docker", FAKE_DOCKER_BODY)
    (bin_dir / "fake_broker.py").write_text(FAKE_BROKER_BODY)
    (bin_dir / "fake_passwd.py").write_text(FAKE_PASSWD_BODY)

    monkeypatch.setenv("PATH", f"{bin_dir}{os.pathsep}{os.environ.get('PATH', '')}")
    monkeypatch.delenv("FAKE_MOSQUITTO_MODE", raising=False)
    monkeypatch.delenv("FAKE_PASSWD_FAIL_USER", raising=False)
    return bin_dir


@pytest.fixture
def work_dir(tmp_path):
    """Base directory for the controller's ephemeral working directories."""
    path = tmp_path / "work"
    path.mkdir()
    return path


@pytest.fixture
def fast_settings():
    """Settings with short timeouts so failure paths finish quickly."""
    return TurnkeySettings(readiness_timeout=3.0, readiness_interval=0.02, stop_grace=1.0)
