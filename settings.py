import os
from pathlib import Path
from dotenv import load_dotenv

_ = load_dotenv()

BASE_DIR = Path(__file__).resolve().parent

# Directory where QEMU creates the VNC unix sockets
VM_TMP_DIR: str = os.environ.get("VM_TMP_DIR", "/tmp")
VM_SOCKET_PREFIX: str = os.environ.get("VM_SOCKET_PREFIX", "superqemu")

VM_DEFAULT_VNC_HOST: str = os.environ.get("VM_DEFAULT_VNC_HOST", "127.0.0.1")
VM_DEFAULT_VNC_PORT = int(os.environ.get("VM_DEFAULT_VNC_PORT", "5900"))

VM_DEFINITIONS_FILE: str = os.environ.get(
    "VM_DEFINITIONS_FILE", os.path.join(BASE_DIR, "vms.json")
)
VM_TIMEOUT_BOOT_S = int(os.environ.get("VM_TIMEOUT_BOOT_S", "600"))

AUTH_TOKEN: str = os.environ.get("AUTH_TOKEN", "")

LOG_LEVEL: str = os.environ.get("LOG_LEVEL", "INFO").upper()
