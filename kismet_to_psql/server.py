"""
Upload-triggered migration service

POST a Kismet log to /upload and the migration runs in the background;
progress is polled from /logs (all jobs) or /logs/{job_id}.
"""
import logging
import os
import shutil
import sys
import tempfile
import threading
from functools import lru_cache
from pathlib import Path

import uvicorn
from fastapi import Depends, FastAPI, File, HTTPException, UploadFile
from fastapi.responses import HTMLResponse, PlainTextResponse

from .config import ConfigError, Settings, load_settings, setup_logging
from .joblog import JobLog, LogRegistry
from .runner import run_job

logger = logging.getLogger(__name__)

UPLOAD_PAGE = """<!DOCTYPE html>
<html>
<head><title>Kismet to PostgreSQL</title></head>
<body>
  <h1>Upload a Kismet log</h1>
  <form action="/upload" method="post" enctype="multipart/form-data">
    <input type="file" name="file" accept=".kismet,.db,.sqlite">
    <button type="submit">Migrate</button>
  </form>
  <p>Progress: <a href="/logs">/logs</a></p>
</body>
</html>
"""

app = FastAPI(title='Kismet to PostgreSQL')
registry = LogRegistry()


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return load_settings()


def save_upload(upload: UploadFile) -> str:
    """Write the uploaded file to a temporary path and return it"""
    suffix = Path(upload.filename or '').suffix or '.kismet'
    with tempfile.NamedTemporaryFile(prefix='kismet-upload-', suffix=suffix, delete=False) as tmp:
        shutil.copyfileobj(upload.file, tmp)
        return tmp.name


def run_upload_job(path: str, filename: str, settings: Settings, log: JobLog):
    """Worker body: run the migration, then always remove the temporary upload"""
    try:
        log.info(f"📦 Starting migration for {filename}")
        result = run_job(
            path,
            settings.postgres_dsn,
            log,
            copy_data=settings.copy_data,
            batch_size=settings.batch_size,
            verify=settings.verify,
        )
        if result.ok:
            log.info(f"🏁 Migration finished for {filename}: {result.total_rows} rows copied")
        else:
            log.error(f"❌ Migration failed for {filename}: {result.error}")
    except Exception as e:
        logger.exception(f"Unexpected error migrating {filename}")
        log.error(f"❌ Migration failed for {filename}: {e}")
    finally:
        try:
            os.remove(path)
        except FileNotFoundError:
            pass
        log.mark_finished()


def start_job(path: str, filename: str, settings: Settings) -> JobLog:
    log = registry.new_job(filename)
    worker = threading.Thread(
        target=run_upload_job,
        args=(path, filename, settings, log),
        name=f"migration-{log.job_id}",
        daemon=True,
    )
    worker.start()
    return log


@app.get('/', response_class=HTMLResponse)
def index():
    return UPLOAD_PAGE


@app.post('/upload', response_class=PlainTextResponse)
def upload(file: UploadFile = File(...), settings: Settings = Depends(get_settings)):
    filename = file.filename or 'upload'
    path = save_upload(file)
    log = start_job(path, filename, settings)
    logger.info(f"Accepted upload {filename} as job {log.job_id}")
    return f"{filename}: upload started (job {log.job_id}). Poll /logs/{log.job_id} for progress.\n"


@app.get('/logs', response_class=PlainTextResponse)
def logs():
    return registry.read_all()


@app.get('/logs/{job_id}', response_class=PlainTextResponse)
def job_logs(job_id: str):
    log = registry.get(job_id)
    if log is None:
        raise HTTPException(status_code=404, detail=f"Unknown job: {job_id}")
    return log.read()


@app.get('/jobs')
def jobs():
    return [
        {'job_id': log.job_id, 'label': log.label, 'finished': log.finished}
        for log in registry.jobs()
    ]


def main():
    try:
        settings = get_settings()
    except ConfigError as e:
        setup_logging()
        logger.error(f"❌ {e}")
        sys.exit(1)

    setup_logging(settings.log_level)
    logger.info(f"Listening on {settings.host}:{settings.port} (batch={settings.batch_size}, copy={settings.copy_data})")

    uvicorn.run(app, host=settings.host, port=settings.port)


if __name__ == '__main__':
    main()
