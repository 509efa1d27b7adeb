"""FastAPI application entry point for the retrieval API."""

import os
from contextlib import asynccontextmanager
from typing import AsyncGenerator

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from server.api.errors import register_exception_handlers
from server.api.routers.DocumentRouter import document_router
from server.api.routers.QueryRouter import query_router
from server.api.services.QueryService import QueryService
from services.ingest.IngestService import IngestService
from services.retrieval.Chunker import Chunker
from services.retrieval.ContextAssembler import ContextAssembler
from services.retrieval.ConversationContextManager import ConversationContextManager
from services.retrieval.EmbeddingCache import EmbeddingCache
from services.retrieval.QueryExpansionDecider import QueryExpansionDecider
from services.retrieval.RetrievalPipeline import RetrievalPipeline
from services.retrieval.Retriever import Retriever
from shared.clients.embed.EmbedClientInterface import EmbedClientInterface
from shared.clients.embed.EmbedClientManager import EmbedClientManager
from shared.clients.llm.LLMClientInterface import LLMClientInterface
from shared.clients.llm.LLMClientManager import LLMClientManager
from shared.clients.rag.RAGClientInterface import RAGClientInterface
from shared.clients.rag.RAGClientManager import RAGClientManager
from shared.helper.HelperConfig import HelperConfig
from shared.logging.logging_setup import setup_logging
from shared.models.config import RetrievalConfig, load_retrieval_config

app_version = os.getenv("APP_VERSION", "unknown")


def wire_services(
    app: FastAPI,
    helper_config: HelperConfig,
    retrieval_config: RetrievalConfig,
    rag_client: RAGClientInterface,
    embed_client: EmbedClientInterface,
    llm_client: LLMClientInterface | None,
) -> None:
    """Build the retrieval components and attach the services to app.state.

    The embedding cache is shared by ingestion and retrieval.
    """
    cache = EmbeddingCache(helper_config, retrieval_config.cache)
    conversation = ConversationContextManager(helper_config, retrieval_config.history)
    pipeline = RetrievalPipeline(
        helper_config=helper_config,
        config=retrieval_config,
        decider=QueryExpansionDecider(helper_config, retrieval_config.expansion, llm_client),
        retriever=Retriever(helper_config, retrieval_config.scoring, rag_client, embed_client, cache),
        assembler=ContextAssembler(helper_config, retrieval_config.assembly, rag_client),
        conversation=conversation,
        rag_client=rag_client,
    )
    app.state.config = helper_config
    app.state.retrieval_config = retrieval_config
    app.state.embedding_cache = cache
    app.state.query_service = QueryService(
        helper_config=helper_config,
        pipeline=pipeline,
        llm_client=llm_client,
        history_config=retrieval_config.history,
    )
    app.state.ingest_service = IngestService(
        helper_config=helper_config,
        chunker=Chunker(helper_config, retrieval_config.chunking),
        embedding_cache=cache,
        rag_client=rag_client,
        embed_client=embed_client,
    )


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Manage application startup and shutdown."""
    app.state.logging = setup_logging()
    helper_config = HelperConfig(logger=app.state.logging)
    # fail fast on invalid settings
    retrieval_config = load_retrieval_config(helper_config)

    rag_client = RAGClientManager(helper_config=helper_config).get_client()
    embed_client = EmbedClientManager(helper_config=helper_config).get_client()
    llm_client = LLMClientManager(helper_config=helper_config).get_client()
    clients = [rag_client, embed_client, llm_client]
    for client in clients:
        await client.boot()

    try:
        await rag_client.do_healthcheck()
        await embed_client.do_healthcheck()

        if not await rag_client.do_existence_check():
            vector_size, distance = await embed_client.do_fetch_embedding_vector_size()
            await rag_client.do_create_collection(vector_size=vector_size, distance=distance)
        else:
            app.state.logging.info("%s collection already exists.", rag_client.get_engine_name())

        wire_services(app, helper_config, retrieval_config, rag_client, embed_client, llm_client)
        app.state.logging.info("Retrieval API v%s ready.", app_version, color="green")
        yield
    finally:
        for client in clients:
            await client.close()
        app.state.logging.info("Retrieval API shut down.")


app = FastAPI(
    title="Retrieval Context API",
    description="Hybrid retrieval and context assembly for document question answering.",
    version=app_version,
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

register_exception_handlers(app)
app.include_router(query_router)
app.include_router(document_router)


@app.get("/health", tags=["Health"])
async def health() -> dict:
    return {"status": "ok", "version": app_version}


# Server Start
if __name__ == "__main__":
    import uvicorn
    port = int(os.getenv("APP_PORT", "8000"))
    setup_logging().info("Starting Retrieval API v%s on port %d...", app_version, port)
    uvicorn.run(app, host="0.0.0.0", port=port)
