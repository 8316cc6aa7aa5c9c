import os
from datetime import datetime

from nanoid import generate

JOB_ID_ALPHABET = 'ABCDEFGHIJKLMNOPQRSTUVWXYZabcdefghijklmnopqrstuvwxyz0123456789'
JOB_ID_SIZE = 21


def generate_job_id():
    """Generate NanoID with A-Z a-z 0-9 alphabet"""
    return generate(JOB_ID_ALPHABET, size=JOB_ID_SIZE)


def write_log(log_path, message):
    """
    Append message to a job log file.

    The job's working directory is never recreated here: once cleanup has
    removed it, further messages for that job are dropped.
    """
    if not log_path or not os.path.isdir(os.path.dirname(log_path)):
        return
    timestamp = datetime.now().strftime('%Y-%m-%d %H:%M:%S')
    try:
        with open(log_path, 'a') as f:
            f.write(f'[{timestamp}] {message}\n')
    except FileNotFoundError:
        # Directory removed between the check and the open
        return
