"""
Spreadsheet ingestion: location detection, splitting, job processing and
multi-job progress.
"""
from src.codeleads.ingestion.aggregator import MultiJobAggregator, ProgressWatcher, StatusBus
from src.codeleads.ingestion.csv_splitter import CsvSplitter, SplitResult, split_by_location
from src.codeleads.ingestion.job_processor import IngestionJobProcessor, create_ingestion_job
from src.codeleads.ingestion.location_detector import LocationDetector
from src.codeleads.ingestion.orchestrator import BatchJobOrchestrator, SubmissionResult

__all__ = [
    "BatchJobOrchestrator",
    "CsvSplitter",
    "IngestionJobProcessor",
    "LocationDetector",
    "MultiJobAggregator",
    "ProgressWatcher",
    "SplitResult",
    "StatusBus",
    "SubmissionResult",
    "create_ingestion_job",
    "split_by_location",
]
