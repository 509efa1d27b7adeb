"""Batch ingestion entry point.

Indexes every .txt and .md file under INGEST_SOURCE_DIR. The file stem is
used as document id; documents that are already indexed are skipped.

Usage:
    python -m services.ingest.ingest_runner
"""

import asyncio
import mimetypes
import os
from pathlib import Path

from services.ingest.IngestService import IngestService
from services.retrieval.Chunker import Chunker
from services.retrieval.EmbeddingCache import EmbeddingCache
from shared.clients.embed.EmbedClientManager import EmbedClientManager
from shared.clients.rag.RAGClientManager import RAGClientManager
from shared.helper.HelperConfig import HelperConfig
from shared.logging.logging_setup import setup_logging
from shared.models.config import load_retrieval_config
from shared.models.errors import DocumentAlreadyExists, RetrievalError
from shared.models.segment import SegmentMetadata

SUPPORTED_SUFFIXES = (".txt", ".md")


def _collect_files(source_dir: str) -> list[Path]:
    root = Path(source_dir)
    if not root.is_dir():
        raise ValueError(f"INGEST_SOURCE_DIR '{source_dir}' is not a directory.")
    return sorted(p for p in root.rglob("*") if p.is_file() and p.suffix.lower() in SUPPORTED_SUFFIXES)


async def main() -> None:
    """Run the batch ingestion."""
    logger = setup_logging()
    config = HelperConfig(logger=logger)
    retrieval_config = load_retrieval_config(config)
    files = _collect_files(config.get_string_val("INGEST_SOURCE_DIR"))

    rag_client = RAGClientManager(helper_config=config).get_client()
    embed_client = EmbedClientManager(helper_config=config).get_client()

    try:
        # both clients are required, abort if one of them is not reachable
        try:
            await embed_client.boot()
            await embed_client.do_healthcheck()
            await rag_client.boot()
            await rag_client.do_healthcheck()
        except Exception as e:
            logger.error("Error booting clients: %s. Aborting.", e)
            return

        if not await rag_client.do_existence_check():
            vector_size, distance = await embed_client.do_fetch_embedding_vector_size()
            await rag_client.do_create_collection(vector_size=vector_size, distance=distance)

        service = IngestService(
            helper_config=config,
            chunker=Chunker(config, retrieval_config.chunking),
            embedding_cache=EmbeddingCache(config, retrieval_config.cache),
            rag_client=rag_client,
            embed_client=embed_client,
        )

        indexed, skipped, failed = 0, 0, 0
        for path in files:
            try:
                content_type, _ = mimetypes.guess_type(path.name)
                await service.do_ingest(
                    text=path.read_text(encoding="utf-8"),
                    document_id=path.stem,
                    metadata=SegmentMetadata(
                        original_file_name=path.name,
                        content_type=content_type or "text/plain",
                        size_bytes=os.path.getsize(path),
                        blob_path=str(path),
                    ),
                )
                indexed += 1
            except DocumentAlreadyExists:
                logger.info("Document '%s' already indexed, skipping.", path.stem)
                skipped += 1
            except (RetrievalError, UnicodeDecodeError) as e:
                logger.error("Failed to ingest '%s': %s", path, e)
                failed += 1

        logger.info("Ingestion finished: %d indexed, %d skipped, %d failed.", indexed, skipped, failed, color="cyan")
    finally:
        await embed_client.close()
        await rag_client.close()


def run() -> None:
    asyncio.run(main())


if __name__ == "__main__":
    run()
