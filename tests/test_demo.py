"""Smoke test for the demo CLI over in-memory backends."""

from __future__ import annotations

from document_encryption import InMemoryTransport
from document_encryption.demo import run_demo


async def test_demo_runs(config, provider, key_storage, capsys):
    await run_demo(
        config,
        transport=InMemoryTransport(database_name=config.database_name),
        key_storage=key_storage,
        key_wrap_provider=provider,
    )
    out = capsys.readouterr().out
    assert "Container orders ready" in out
    assert "1 matching document(s)" in out
    assert "DEMO COMPLETE" in out
    assert await key_storage.get("key1") is not None
