import pytest

from receipty.core.db import (
    INTERRUPTED_ERROR,
    SCHEMA_VERSION,
    InvalidTransition,
    JobContent,
    JobStore,
)
from receipty.core.text import hash_bytes, hash_text


def test_insert_job_derives_fields(store):
    job_id = store.insert_job(JobContent(text="Hello\nWorld", mode="ethernet", payload_bytes=15))
    job = store.get_job(job_id)
    assert job.status == "queued"
    assert job.mode == "ethernet"
    assert job.payload_bytes == 15
    assert job.text == "Hello\nWorld"
    assert job.text_hash == hash_text("Hello\nWorld")
    assert job.has_image is False
    assert job.error is None
    data = job.to_dict()
    assert data["bytes"] == 15
    assert "image_data" not in data


def test_image_job_keeps_bytes(store):
    job_id = store.insert_job(
        JobContent(text="", image_data=b"\x89PNG...", image_mime="image/png", mode="usb", payload_bytes=40)
    )
    job = store.get_job(job_id)
    assert job.image_data == b"\x89PNG..."
    assert job.image_hash == hash_bytes(b"\x89PNG...")
    assert job.image_mime == "image/png"
    assert job.to_dict()["has_image"] is True


def test_lifecycle_transitions(store):
    job_id = store.insert_job(JobContent(text="a", mode="ethernet", payload_bytes=2))
    with pytest.raises(InvalidTransition):
        store.update_job_status(job_id, "succeeded")
    store.update_job_status(job_id, "printing")
    store.update_job_status(job_id, "failed", "boom")
    assert store.get_job(job_id).error == "boom"
    with pytest.raises(InvalidTransition):
        store.update_job_status(job_id, "printing")
    with pytest.raises(InvalidTransition):
        store.update_job_status(job_id, "cancelled")
    with pytest.raises(KeyError):
        store.update_job_status(9999, "printing")


def test_error_dropped_unless_failed(store):
    job_id = store.insert_job(JobContent(text="a", mode="ethernet", payload_bytes=2))
    store.update_job_status(job_id, "printing")
    store.update_job_status(job_id, "succeeded", "ignored")
    assert store.get_job(job_id).error is None


def test_claim_takes_oldest_queued(store):
    ids = [store.insert_job(JobContent(text=str(n), mode="ethernet", payload_bytes=2)) for n in range(3)]
    first = store.claim_next_job()
    assert first.id == ids[0]
    assert first.status == "printing"
    assert store.next_queued_job().id == ids[1]
    assert store.claim_next_job().id == ids[1]
    assert store.claim_next_job().id == ids[2]
    assert store.claim_next_job() is None


def test_list_jobs_newest_first_with_pages(store):
    ids = [store.insert_job(JobContent(text=str(n), mode="ethernet", payload_bytes=2)) for n in range(5)]
    page = store.list_jobs(page=1, page_size=2)
    assert [j.id for j in page.items] == [ids[4], ids[3]]
    assert page.total == 5
    page3 = store.list_jobs(page=3, page_size=2)
    assert [j.id for j in page3.items] == [ids[0]]
    assert store.list_jobs(page=4, page_size=2).items == []
    assert store.latest_job().id == ids[4]
    assert store.count_by_status("queued") == 5


def test_fail_interrupted_jobs(store):
    a = store.insert_job(JobContent(text="a", mode="ethernet", payload_bytes=2))
    b = store.insert_job(JobContent(text="b", mode="ethernet", payload_bytes=2))
    store.claim_next_job()
    assert store.fail_interrupted_jobs() == 1
    assert store.get_job(a).status == "failed"
    assert store.get_job(a).error == INTERRUPTED_ERROR
    assert store.get_job(b).status == "queued"
    assert store.fail_interrupted_jobs() == 0


def test_reopened_database_keeps_jobs(tmp_path):
    path = str(tmp_path / "jobs.sqlite3")
    s = JobStore(path)
    try:
        text_id = s.insert_job(JobContent(text="hi", mode="usb", payload_bytes=3))
        image_id = s.insert_job(JobContent(text="", image_data=b"img", image_mime="image/png", mode="usb"))
    finally:
        s.close()

    s = JobStore(path)
    try:
        assert s.get_job(text_id).text == "hi"
        assert s.get_job(text_id).image_data is None
        assert s.get_job(image_id).image_hash == hash_bytes(b"img")
        versions = [r["version"] for r in s._conn.execute("SELECT version FROM schema_version")]
        assert versions == [SCHEMA_VERSION]
    finally:
        s.close()
