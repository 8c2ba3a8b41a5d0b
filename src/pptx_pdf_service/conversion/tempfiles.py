import secrets
import time
from pathlib import Path


def tmp_file_name(tmp_dir: Path, prefix: str, ext: str) -> Path:
    """Return a unique path under tmp_dir: `<prefix>-<epoch ms>-<12 hex><ext>`."""
    unique = f"{int(time.time() * 1000)}-{secrets.token_hex(6)}"
    return Path(tmp_dir) / f"{prefix}-{unique}{ext}"
