# ========================
# tests/test_api_jobs.py
# ========================

import unittest
import tempfile
import csv
import os
import sys
from pathlib import Path
from unittest import mock

# Add the project root to Python path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

import api_server
from src.pipeline.cancellation import CancelToken
from src.pipeline.models import PipelineConfig, AggregationDirective, Aggregation


class TestPipelineJobManager(unittest.TestCase):
    """Test the background job runner without a live server."""

    def setUp(self):
        self.temp_dir = tempfile.TemporaryDirectory()
        base = Path(self.temp_dir.name)
        self.input_file = base / 'sales.csv'
        with open(self.input_file, 'w', newline='') as f:
            csv.writer(f).writerows([['region', 'amount'], ['A', '10'], ['B', '5'], ['A', '7']])
        self.output_dir = base / 'out'
        self.output_dir.mkdir()
        self.job_id = 'job-under-test'
        with api_server.job_lock:
            api_server.job_status[self.job_id] = {'job_id': self.job_id, 'status': 'queued'}
            api_server.job_tokens[self.job_id] = CancelToken()
        self.config = PipelineConfig(
            name='api_job',
            type='csv',
            source=str(self.input_file),
            aggregations=[AggregationDirective(['region'], [Aggregation('amount', 'sum', 'total')])],
            output_format='csv',
        )

    def tearDown(self):
        with api_server.job_lock:
            api_server.job_status.pop(self.job_id, None)
            api_server.job_results.pop(self.job_id, None)
            api_server.job_tokens.pop(self.job_id, None)
        self.temp_dir.cleanup()

    def test_completed_job(self):
        api_server.PipelineJobManager.run_pipeline(self.job_id, self.config, str(self.output_dir))
        job = api_server.job_status[self.job_id]
        self.assertEqual(job['status'], 'completed')
        self.assertEqual((self.output_dir / 'result.csv').read_text(encoding='utf-8'),
                         "region,total\nA,17\nB,5\n")

    def test_unexpected_exception_marks_job_failed(self):
        with mock.patch.object(api_server.DataPipeline, 'run', side_effect=RuntimeError("sampler exploded")):
            api_server.PipelineJobManager.run_pipeline(self.job_id, self.config, str(self.output_dir))
        job = api_server.job_status[self.job_id]
        self.assertEqual(job['status'], 'failed')
        self.assertEqual(job['error']['type'], 'RuntimeError')
        self.assertIn('sampler exploded', job['error']['message'])
        self.assertIn('failed_at', job)
        self.assertNotIn(self.job_id, api_server.job_results)


if __name__ == '__main__':
    unittest.main()
