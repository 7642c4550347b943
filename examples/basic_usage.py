"""
Basic usage example for glyph-scroll.
"""

import asyncio

from glyphscroll import InMemoryLedger, LocalSigner, ManifestBuilder, ScrollPublisher, ScrollRetriever
from glyphscroll.core import Config

STORY = "It was a dark and stormy night. " * 200


async def main():
    config = Config(max_payload_size=1200)
    ledger = InMemoryLedger(max_payload_size=config.max_payload_size)

    # Build the package locally
    print("Building package...")
    package = ManifestBuilder(config).build(
        STORY, title="A Stormy Night", author="Anon", author_public_key="pk_demo"
    )
    summary = package.summary
    print(f"Story id: {package.story_id}")
    print(f"Glyphs: {summary.total_chunks} ({summary.compression.percent_saved}% saved)")

    # Publish
    print("\nPublishing...")
    publisher = ScrollPublisher(ledger, config=config)
    result = await publisher.publish(package, LocalSigner("pk_demo"))
    print(f"Status: {result.status.value}, manifest ref: {result.manifest_ref}")

    # Read it back, watching the prefix grow
    print("\nReading...")
    retriever = ScrollRetriever(ledger, config=config)
    session = retriever.open(package.story_id, result.manifest_ref)
    read = await session.run()
    print(f"Stage: {read.stage.value}, complete: {read.is_complete}")
    print(f"Text: {read.text[:80]}...")


if __name__ == "__main__":
    asyncio.run(main())
