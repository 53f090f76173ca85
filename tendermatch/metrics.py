# tendermatch/metrics.py
from prometheus_client import Counter

uploads_total = Counter("tendermatch_uploads_total", "Documents uploaded")
processing_started = Counter("tendermatch_processing_started_total", "Document processing jobs started")
processing_completed = Counter("tendermatch_processing_completed_total", "Document processing jobs completed")
processing_failed = Counter("tendermatch_processing_failed_total", "Document processing failures", ["code"])
tenders_synced = Counter("tendermatch_tenders_synced_total", "Tender records seen by sync", ["outcome"])
search_calls = Counter("tendermatch_search_calls_total", "Semantic search calls", ["outcome"])
