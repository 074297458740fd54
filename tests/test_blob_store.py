import pytest

from plantdesk.storage.blob import LocalBlobStore, safe_file_name


def test_safe_file_name_strips_directories_and_odd_characters():
    assert safe_file_name("../../etc/pass wd") == "pass_wd"
    assert safe_file_name("...") == "attachment"


@pytest.mark.asyncio
async def test_put_then_delete_removes_file_and_folder(tmp_path):
    store = LocalBlobStore(tmp_path, base_url="https://files.test/a/")

    url = await store.put("report.pdf", b"%PDF")

    assert url.startswith("https://files.test/a/")
    assert len(list(tmp_path.rglob("report.pdf"))) == 1
    assert await store.delete(url) is True
    assert list(tmp_path.iterdir()) == []
    assert await store.delete(url) is False


@pytest.mark.asyncio
async def test_delete_ignores_foreign_and_traversing_urls(tmp_path):
    store = LocalBlobStore(tmp_path / "blobs", base_url="/attachments")
    secret = tmp_path / "secret.txt"
    secret.write_text("keep")

    assert await store.delete("https://elsewhere.test/x/secret.txt") is False
    assert await store.delete("/attachments/../secret.txt") is False
    assert secret.exists()
