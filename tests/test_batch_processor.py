import csv
import json
import xml.etree.ElementTree as ET
from datetime import datetime, timedelta

import pytest

from synpat.batch_processor import BatchProcessor, chunked
from synpat.errors import InvalidFormatError, InvalidInputError, NotFoundError, UnsupportedFormatError
from synpat.hooks import HookEvent


class RecordingSleep:
    def __init__(self):
        self.calls = []

    def __call__(self, seconds):
        self.calls.append(seconds)


@pytest.fixture
def patent_ids(make_patent):
    return [make_patent(f"US900000{i}", f"Widget {i}", claims="1. A widget comprising a frame.")
            for i in range(5)]


def test_chunked():
    assert chunked([1, 2, 3, 4, 5], 2) == [[1, 2], [3, 4], [5]]
    assert chunked([], 3) == []


class TestBatchAnalyze:
    def test_pauses_between_chunks_only(self, db, config, patent_ids):
        config['batch'].update({'size': 2, 'pause_seconds': 0.5})
        sleep = RecordingSleep()

        results = BatchProcessor(db, config, sleep=sleep).batch_analyze_patents(patent_ids)

        assert results == {'total': 5, 'processed': 5, 'failed': 0, 'errors': []}
        assert sleep.calls == [0.5, 0.5]
        assert all(db.get_patent(pid).strength_score is not None for pid in patent_ids)

    def test_failures_are_collected(self, db, config, patent_ids):
        results = BatchProcessor(db, config, sleep=RecordingSleep()).batch_analyze_patents([patent_ids[0], 999])
        assert results['processed'] == 1
        assert results['failed'] == 1
        assert results['errors'][0]['patent_id'] == 999


class TestBatchUpdateMetadata:
    def test_only_whitelisted_fields_change(self, db, config, patent_ids):
        results = BatchProcessor(db, config).batch_update_metadata(
            patent_ids[:2] + [999],
            {'assignee': 'New Corp', 'grant_date': '2019-07-01', 'patent_number': 'XX1'},
        )

        assert (results['updated'], results['failed']) == (2, 1)
        patent = db.get_patent(patent_ids[0])
        assert patent.assignee == 'New Corp'
        assert patent.grant_date.isoformat() == '2019-07-01'
        assert patent.patent_number == 'US9000000'

    def test_nothing_editable(self, db, config, patent_ids):
        with pytest.raises(InvalidInputError):
            BatchProcessor(db, config).batch_update_metadata(patent_ids, {'id': 1})

    def test_bad_date(self, db, config, patent_ids):
        with pytest.raises(InvalidFormatError):
            BatchProcessor(db, config).batch_update_metadata(patent_ids, {'filing_date': '31/12/2019'})


class TestBatchExport:
    def test_csv(self, db, config, patent_ids):
        result = BatchProcessor(db, config).batch_export_patents(patent_ids[:2], 'CSV')

        with open(result['file_path'], newline='', encoding='utf-8') as f:
            rows = list(csv.reader(f))
        assert rows[0][:3] == ['ID', 'Patent Number', 'Title']
        assert [r[1] for r in rows[1:]] == ['US9000000', 'US9000001']
        assert result['count'] == 2
        assert result['file_url'].startswith('https://files.example.com/exports/patents-export-')

    def test_json_and_xml(self, db, config, patent_ids):
        processor = BatchProcessor(db, config)

        with open(processor.batch_export_patents(patent_ids, 'json')['file_path'], encoding='utf-8') as f:
            assert len(json.load(f)) == 5

        tree = ET.parse(processor.batch_export_patents(patent_ids[:1], 'xml')['file_path'])
        assert tree.getroot().find('patent/patent_number').text == 'US9000000'

    def test_unsupported_format(self, db, config, patent_ids):
        with pytest.raises(UnsupportedFormatError):
            BatchProcessor(db, config).batch_export_patents(patent_ids, 'pdf')


class TestBatchJobs:
    def test_validation(self, db, config):
        processor = BatchProcessor(db, config)
        with pytest.raises(InvalidInputError):
            processor.schedule_batch_job('reindex', {'patent_ids': []})
        with pytest.raises(InvalidFormatError):
            processor.schedule_batch_job('analyze', {'patent_ids': '1,2'})
        with pytest.raises(NotFoundError):
            processor.process_batch_job('missing')

    def test_pending_to_completed(self, db, config, hooks, patent_ids):
        events = []
        hooks.subscribe(HookEvent.BATCH_JOB_COMPLETED, lambda **payload: events.append(payload))
        processor = BatchProcessor(db, config, sleep=RecordingSleep())

        job_id = processor.schedule_batch_job('analyze', {'patent_ids': patent_ids}, delay_seconds=0)
        assert processor.get_job(job_id).status == 'pending'

        outcome = processor.process_batch_job(job_id)

        job = processor.get_job(job_id)
        assert outcome['status'] == job.status == 'completed'
        assert job.result['processed'] == 5
        assert job.started_at is not None and job.completed_at is not None
        assert events[0]['job_id'] == job_id and events[0]['status'] == 'completed'

        with pytest.raises(InvalidInputError):
            processor.process_batch_job(job_id)

    def test_failure_is_recorded_without_retry(self, db, config, patent_ids):
        processor = BatchProcessor(db, config)
        job_id = processor.schedule_batch_job('export', {'patent_ids': patent_ids, 'format': 'docx'},
                                              delay_seconds=0)

        outcome = processor.process_batch_job(job_id)

        assert outcome['status'] == 'failed'
        assert 'docx' in processor.get_job(job_id).error
        assert processor.run_pending_jobs(now=datetime.utcnow() + timedelta(days=1)) == []

    def test_run_pending_jobs_respects_delay(self, db, config, patent_ids):
        processor = BatchProcessor(db, config)
        job_id = processor.schedule_batch_job(
            'update_metadata', {'patent_ids': patent_ids, 'metadata': {'status': 'expired'}}
        )

        assert processor.run_pending_jobs(now=datetime.utcnow()) == []

        outcomes = processor.run_pending_jobs(now=datetime.utcnow() + timedelta(minutes=5))
        assert [o['job_id'] for o in outcomes] == [job_id]
        assert db.get_patent(patent_ids[0]).status == 'expired'
