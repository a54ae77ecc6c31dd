import io
import logging

from imagegen.logging.logger import Log


class TestLog:
    def test_configure_sets_level(self) -> None:
        Log.configure("warning", stream=io.StringIO())
        assert logging.getLogger("imagegen").level == logging.WARNING
        Log.configure("INFO")

    def test_configure_is_idempotent(self) -> None:
        Log.configure("INFO", stream=io.StringIO())
        Log.configure("INFO", stream=io.StringIO())
        assert len(logging.getLogger("imagegen").handlers) == 1

    def test_messages_reach_imagegen_logger(self, caplog) -> None:  # type: ignore[no-untyped-def]
        with caplog.at_level(logging.DEBUG, logger="imagegen"):
            Log.info("submitted job", job_id="job-1")
            Log.warning("sidecar failed")
            Log.debug("poll detail")
        messages = [record.getMessage() for record in caplog.records]
        assert messages == ["submitted job", "sidecar failed", "poll detail"]
        assert caplog.records[0].job_id == "job-1"
