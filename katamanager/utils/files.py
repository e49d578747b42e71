import os
import stat
from pathlib import Path


def ensure_dirs(dirs):
    created = []

    for dir_path, dir_mode in dirs:
        dir_path = Path(dir_path)
        if not dir_path.exists():
            dir_path.mkdir(mode=dir_mode, parents=True)
            created.append(dir_path)

    return created


def find_config_file(directory, pattern='*.toml'):
    # Sorted so the pick is stable across pulls
    candidates = sorted(Path(directory).glob(pattern))
    if not candidates:
        raise FileNotFoundError(
            f'No file matching {pattern!r} found in {str(directory)!r}'
        )
    return candidates[0]


def write_atomic(path, text, mode=0o644):
    '''
    Replaces path with text through a temporary file beside it. A symlink
    at path is followed, and an existing file keeps its permissions.
    '''
    path = Path(path).resolve()
    try:
        mode = stat.S_IMODE(path.stat().st_mode)
    except FileNotFoundError:
        pass

    tmp_path = path.with_name(f'.{path.name}.tmp')
    fd = os.open(tmp_path, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, mode)
    try:
        with open(fd, 'w') as f:
            # Creation mode is masked by umask
            os.fchmod(f.fileno(), mode)
            f.write(text)
            f.flush()
            os.fsync(f.fileno())
        os.replace(tmp_path, path)
    except BaseException:
        tmp_path.unlink(missing_ok=True)
        raise

    return path
