import os
import re
import sys
import logging
import atexit
import errno
import tempfile

if sys.platform == 'win32':
    import msvcrt
else:
    import fcntl

logger = logging.getLogger(__name__)
LOCK_FILE_HANDLE = None

def lock_file_path_for(bus_name: str, prefix: str, directory: str = None) -> str:
    """
    Lock file path for one bus, e.g. "/tmp/seplos_monitor_dev_ttyUSB0.lock".

    Two monitors talking to the same RS-485 bus would interleave frames, so
    the lock is per device rather than per application.
    """
    safe_name = re.sub(r'[^A-Za-z0-9._-]+', '_', bus_name).strip('_') or "default"
    return os.path.join(directory or tempfile.gettempdir(), f"{prefix}_{safe_name}.lock")

def acquire_lock(lock_file_path):
    """
    Acquires an exclusive, non-blocking lock on `lock_file_path`.

    Uses fcntl on Unix and msvcrt on Windows, writes our PID into the file
    and registers cleanup on exit.

    Returns:
        True if the lock was acquired, False if another process holds it or
        the file cannot be created.
    """
    global LOCK_FILE_HANDLE
    try:
        LOCK_FILE_HANDLE = open(lock_file_path, 'a+', buffering=1)
        if sys.platform == 'win32':
            msvcrt.locking(LOCK_FILE_HANDLE.fileno(), msvcrt.LK_NBLCK, 1)
        else:
            fcntl.lockf(LOCK_FILE_HANDLE, fcntl.LOCK_EX | fcntl.LOCK_NB)

        LOCK_FILE_HANDLE.seek(0)
        LOCK_FILE_HANDLE.truncate()
        LOCK_FILE_HANDLE.write(str(os.getpid()))
        LOCK_FILE_HANDLE.flush()
        atexit.register(cleanup_lock_file)
        logger.info(f"Acquired bus lock: {lock_file_path}")
        return True
    except OSError as e:
        is_locked = (sys.platform != 'win32' and e.errno in (errno.EACCES, errno.EAGAIN)) or \
                      (sys.platform == 'win32' and (e.errno == errno.EACCES or 'locked' in str(e).lower()))
        if is_locked:
            logger.error(f"Another process is already using this bus (lock held: {lock_file_path}).")
        else:
            logger.critical(f"Could not create or lock file '{lock_file_path}': {e}. Check permissions.")
        if LOCK_FILE_HANDLE:
            LOCK_FILE_HANDLE.close()
            LOCK_FILE_HANDLE = None
        return False

def cleanup_lock_file():
    """Releases the lock and removes the lock file. Registered with atexit."""
    global LOCK_FILE_HANDLE
    if LOCK_FILE_HANDLE:
        lock_file_path = LOCK_FILE_HANDLE.name
        try:
            if sys.platform == 'win32':
                msvcrt.locking(LOCK_FILE_HANDLE.fileno(), msvcrt.LK_UNLCK, 1)
            else:
                fcntl.lockf(LOCK_FILE_HANDLE, fcntl.LOCK_UN)
            LOCK_FILE_HANDLE.close()
            try:
                os.remove(lock_file_path)
                logger.info(f"Lock file {lock_file_path} cleaned up.")
            except OSError:
                pass
        except OSError as e:
            logger.warning(f"Could not cleanly release lock file: {e}")
        finally:
            LOCK_FILE_HANDLE = None
