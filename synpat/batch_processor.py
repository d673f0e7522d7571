"""
SynPat Batch Processor
Chunked bulk analysis, metadata updates, exports and background jobs.

Background jobs are rows in ``batch_jobs``; ``run_pending_jobs`` (the
``--run-jobs`` command, typically from cron) processes the ones that are due.
A job moves pending -> processing -> completed, or to failed with the error
text. Failed jobs are not retried.
"""

import csv
import json
import logging
import time
import uuid
import xml.etree.ElementTree as ET
from datetime import datetime, timedelta
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional

from .config import build_config
from .data_import import parse_date
from .database import BatchJob, DatabaseManager, JobStatus, Patent
from .errors import InvalidFormatError, InvalidInputError, NotFoundError, UnsupportedFormatError
from .hooks import HookEvent, HookRegistry
from .patent_analyzer import PatentAnalyzer
from .pdf_generator import public_url

logger = logging.getLogger(__name__)

JOB_TYPES = ('analyze', 'export', 'update_metadata')
EXPORT_FORMATS = ('csv', 'json', 'xml')

METADATA_FIELDS = (
    'title', 'abstract', 'assignee', 'inventor', 'classification', 'status',
    'filing_date', 'grant_date', 'expiration_date',
    'forward_citations', 'backward_citations',
)
DATE_FIELDS = ('filing_date', 'grant_date', 'expiration_date')

CSV_COLUMNS = [
    ('id', 'ID'),
    ('patent_number', 'Patent Number'),
    ('title', 'Title'),
    ('abstract', 'Abstract'),
    ('filing_date', 'Filing Date'),
    ('grant_date', 'Grant Date'),
    ('inventor', 'Inventor'),
    ('assignee', 'Assignee'),
]


def chunked(items: List[Any], size: int) -> List[List[Any]]:
    size = max(1, int(size))
    return [items[i:i + size] for i in range(0, len(items), size)]


class BatchProcessor:
    """Bulk operations over patents, sequential within one invocation"""

    def __init__(self, db: DatabaseManager, config: Optional[Dict[str, Any]] = None,
                 hooks: Optional[HookRegistry] = None,
                 analyzer: Optional[PatentAnalyzer] = None,
                 sleep: Callable[[float], None] = time.sleep):
        self.db = db
        self.config = config or build_config()
        self.hooks = hooks or db.hooks
        self.analyzer = analyzer or PatentAnalyzer(db, self.hooks)
        self.sleep = sleep

        batch_config = self.config.get('batch', {})
        self.batch_size = batch_config.get('size', 50)
        self.pause_seconds = batch_config.get('pause_seconds', 1.0)
        self.job_delay_seconds = batch_config.get('job_delay_seconds', 60)

        self.export_dir = Path(self.config['paths']['export_folder'])
        self.export_url = self.config['storage'].get('export_url', '')

    # ------------------------------------------------------------------
    # Bulk operations
    # ------------------------------------------------------------------
    def batch_analyze_patents(self, patent_ids: List[int]) -> Dict[str, Any]:
        """Analyze in chunks, pausing between chunks (not after the last one)"""
        results = {
            'total': len(patent_ids),
            'processed': 0,
            'failed': 0,
            'errors': [],
        }

        batches = chunked(list(patent_ids), self.batch_size)
        for batch_index, batch in enumerate(batches):
            for patent_id in batch:
                try:
                    self.analyzer.analyze_patent(patent_id)
                except Exception as e:
                    logger.warning(f"Analysis failed for patent {patent_id}: {e}")
                    results['failed'] += 1
                    results['errors'].append({'patent_id': patent_id, 'error': str(e)})
                    continue
                results['processed'] += 1

            logger.info(f"Batch {batch_index + 1}/{len(batches)} analyzed "
                        f"({results['processed']} ok, {results['failed']} failed so far)")
            if batch_index < len(batches) - 1:
                self.sleep(self.pause_seconds)

        return results

    def batch_update_metadata(self, patent_ids: List[int], metadata: Dict[str, Any]) -> Dict[str, Any]:
        """Apply the same whitelisted field values to every patent"""
        ignored = sorted(set(metadata) - set(METADATA_FIELDS))
        if ignored:
            logger.warning(f"Ignoring non-editable fields: {', '.join(ignored)}")

        values = {}
        for key, value in metadata.items():
            if key not in METADATA_FIELDS:
                continue
            values[key] = parse_date(key, value) if key in DATE_FIELDS else value
        if not values:
            raise InvalidInputError("No editable metadata fields provided")

        results = {'total': len(patent_ids), 'updated': 0, 'failed': 0, 'errors': []}
        for patent_id in patent_ids:
            with self.db.session_scope() as session:
                patent = session.get(Patent, patent_id)
                if patent is None:
                    results['failed'] += 1
                    results['errors'].append({'patent_id': patent_id, 'error': f"Patent not found: {patent_id}"})
                    continue
                for key, value in values.items():
                    setattr(patent, key, value)
            results['updated'] += 1

        return results

    def batch_export_patents(self, patent_ids: List[int], fmt: str = 'csv') -> Dict[str, Any]:
        fmt = (fmt or '').lower()
        if fmt not in EXPORT_FORMATS:
            raise UnsupportedFormatError(f"Unsupported export format: {fmt}")

        patents = self.db.get_patents(list(patent_ids))
        self.export_dir.mkdir(parents=True, exist_ok=True)
        stamp = datetime.now().strftime('%Y%m%d%H%M%S')
        file_path = self.export_dir / f"patents-export-{stamp}-{uuid.uuid4().hex[:6]}.{fmt}"

        if fmt == 'csv':
            self._export_csv(patents, file_path)
        elif fmt == 'json':
            self._export_json(patents, file_path)
        else:
            self._export_xml(patents, file_path)

        logger.info(f"Exported {len(patents)} patents to {file_path}")
        return {
            'file_path': str(file_path),
            'file_url': public_url(self.export_url, self.export_dir, file_path),
            'count': len(patents),
        }

    @staticmethod
    def _export_csv(patents: List[Patent], file_path: Path) -> None:
        with open(file_path, 'w', newline='', encoding='utf-8') as f:
            writer = csv.writer(f)
            writer.writerow([label for _, label in CSV_COLUMNS])
            for patent in patents:
                row = patent.to_dict()
                writer.writerow(['' if row[key] is None else row[key] for key, _ in CSV_COLUMNS])

    @staticmethod
    def _export_json(patents: List[Patent], file_path: Path) -> None:
        with open(file_path, 'w', encoding='utf-8') as f:
            json.dump([p.to_dict() for p in patents], f, indent=2)

    @staticmethod
    def _export_xml(patents: List[Patent], file_path: Path) -> None:
        root = ET.Element('patents')
        for patent in patents:
            node = ET.SubElement(root, 'patent')
            for key, value in patent.to_dict().items():
                child = ET.SubElement(node, key)
                if isinstance(value, (list, dict)):
                    child.text = json.dumps(value)
                else:
                    child.text = '' if value is None else str(value)
        ET.ElementTree(root).write(file_path, encoding='utf-8', xml_declaration=True)

    # ------------------------------------------------------------------
    # Background jobs
    # ------------------------------------------------------------------
    def schedule_batch_job(self, job_type: str, params: Dict[str, Any],
                           delay_seconds: Optional[float] = None) -> str:
        """Queue a job for ``--run-jobs``; returns its job id"""
        if job_type not in JOB_TYPES:
            raise InvalidInputError(f"Unknown job type: {job_type}")
        if not isinstance(params, dict) or not isinstance(params.get('patent_ids'), list):
            raise InvalidFormatError("Job params must include a patent_ids list")

        delay = self.job_delay_seconds if delay_seconds is None else delay_seconds
        with self.db.session_scope() as session:
            job = BatchJob(
                job_type=job_type,
                params=params,
                status=JobStatus.PENDING.value,
                run_after=datetime.utcnow() + timedelta(seconds=delay),
            )
            session.add(job)
            session.flush()
            job_id = job.job_id

        logger.info(f"Scheduled {job_type} job {job_id}")
        return job_id

    def get_job(self, job_id: str) -> BatchJob:
        session = self.db.get_session()
        try:
            job = session.query(BatchJob).filter(BatchJob.job_id == job_id).first()
        finally:
            session.close()
        if not job:
            raise NotFoundError("batch_job", job_id)
        return job

    def process_batch_job(self, job_id: str) -> Dict[str, Any]:
        """Run one pending job to completion; a failure marks it failed"""
        with self.db.session_scope() as session:
            job = session.query(BatchJob).filter(BatchJob.job_id == job_id).first()
            if not job:
                raise NotFoundError("batch_job", job_id)
            if job.status != JobStatus.PENDING.value:
                raise InvalidInputError(f"Job {job_id} is {job.status}, not pending")
            job.status = JobStatus.PROCESSING.value
            job.started_at = datetime.utcnow()
            job_type, params = job.job_type, dict(job.params or {})

        status, result, error = JobStatus.COMPLETED.value, None, None
        try:
            result = self._execute(job_type, params)
        except Exception as e:
            logger.error(f"Batch job {job_id} ({job_type}) failed: {e}")
            status, error = JobStatus.FAILED.value, str(e)

        with self.db.session_scope() as session:
            job = session.query(BatchJob).filter(BatchJob.job_id == job_id).first()
            job.status = status
            job.result = result
            job.error = error
            job.completed_at = datetime.utcnow()

        logger.info(f"Batch job {job_id} {status}")
        self.hooks.emit(HookEvent.BATCH_JOB_COMPLETED, job_id=job_id, job_type=job_type,
                        status=status, result=result)
        return {'job_id': job_id, 'status': status, 'result': result, 'error': error}

    def _execute(self, job_type: str, params: Dict[str, Any]) -> Dict[str, Any]:
        patent_ids = params.get('patent_ids') or []
        if job_type == 'analyze':
            return self.batch_analyze_patents(patent_ids)
        if job_type == 'export':
            return self.batch_export_patents(patent_ids, params.get('format', 'csv'))
        if job_type == 'update_metadata':
            return self.batch_update_metadata(patent_ids, params.get('metadata') or {})
        raise InvalidInputError(f"Unknown job type: {job_type}")

    def run_pending_jobs(self, now: Optional[datetime] = None) -> List[Dict[str, Any]]:
        """Process every pending job whose run_after has passed, oldest first"""
        now = now or datetime.utcnow()
        session = self.db.get_session()
        try:
            due = [
                job.job_id for job in session.query(BatchJob)
                .filter(BatchJob.status == JobStatus.PENDING.value, BatchJob.run_after <= now)
                .order_by(BatchJob.run_after, BatchJob.id)
                .all()
            ]
        finally:
            session.close()

        if due:
            logger.info(f"Processing {len(due)} pending batch job(s)")
        return [self.process_batch_job(job_id) for job_id in due]
