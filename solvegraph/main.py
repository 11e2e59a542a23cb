import asyncio
import logging
import os
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import Optional

import redis
from fastapi import BackgroundTasks, Depends, FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from google import genai
from redis.exceptions import RedisError

from .analysis import AnalysisService, handle_analysis_job
from .auth import UserIdentity, get_current_user, require_admin
from .chat import ChatOrchestrator
from .chat_store import ChatStore
from .config_loader import AppConfig, get_config
from .conversation_cache import ConversationCache
from .database import Neo4jConnection
from .embeddings import EmbeddingClient
from .errors import NotFoundError, SolvegraphError
from .graph_writer import GraphUpsertEngine, handle_job
from .llm import GenerativeClient, RetryPolicy
from .models import (
    AnalyzeRequest, AnalyzeResponse, ChatDetailResponse, ChatRequest, ChatResponse, ChatSummary,
)
from .publisher import JobPublisher
from .relational import RelationalStore
from .retriever import RetrievalEngine
from .settings import Settings, load_settings
from .signature import SIGNATURE_HEADER, SignatureVerifier

logging.basicConfig(
    level=load_settings().log_level.upper(),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)


# =============================================================================
# SERVICES (constructed once per process, injected into routes)
# =============================================================================

@dataclass
class Services:
    settings: Settings
    config: AppConfig
    db: Neo4jConnection
    relational: RelationalStore
    cache_client: object
    llm: GenerativeClient
    embedder: EmbeddingClient
    publisher: JobPublisher
    verifier: SignatureVerifier
    graph_engine: GraphUpsertEngine
    chat_store: ChatStore
    cache: ConversationCache
    retriever: RetrievalEngine
    orchestrator: ChatOrchestrator
    analysis: AnalysisService

    def close(self):
        self.db.close()
        self.relational.close()
        try:
            self.cache_client.close()
        except RedisError as e:
            logger.debug(f"Ignoring error while closing cache client: {e}")


def build_services(settings: Settings, config: AppConfig) -> Services:
    retry_policy = RetryPolicy(config.retry.delays)
    genai_client = genai.Client(api_key=settings.gemini_api_key)

    db = Neo4jConnection(settings.neo4j_uri, settings.neo4j_user, settings.neo4j_password, settings.neo4j_database)
    relational = RelationalStore(settings.database_url)
    relational.create_all()
    cache_client = redis.Redis.from_url(settings.redis_url, decode_responses=True)

    llm = GenerativeClient(
        genai_client,
        analysis_model=config.models.analysis,
        chat_model=config.models.chat,
        retry_policy=retry_policy,
        title_max_words=config.chat.title_max_words,
        default_title=config.chat.default_title,
    )
    embedder = EmbeddingClient(genai_client, config.models.embedding, config.models.embedding_dimensions, retry_policy)
    publisher = JobPublisher(
        settings.qstash_url,
        settings.qstash_token,
        settings.public_base_url,
        graph_writer_path=config.queue.graph_writer_path,
        db_writer_path=config.queue.db_writer_path,
        retries=config.queue.retries,
    )
    verifier = SignatureVerifier(
        settings.qstash_current_signing_key,
        settings.qstash_next_signing_key,
        clock_tolerance=config.queue.clock_tolerance_seconds,
    )
    chat_store = ChatStore(db)
    cache = ConversationCache(cache_client, chat_store, config.chat.history_length, config.chat.cache_ttl_seconds)
    retriever = RetrievalEngine(
        db,
        embedder,
        candidates=config.retrieval.candidates_per_index,
        per_type_limit=config.retrieval.per_type_limit,
        indexes=config.retrieval.indexes,
        empty_context=config.retrieval.empty_context,
    )

    return Services(
        settings=settings,
        config=config,
        db=db,
        relational=relational,
        cache_client=cache_client,
        llm=llm,
        embedder=embedder,
        publisher=publisher,
        verifier=verifier,
        graph_engine=GraphUpsertEngine(db, embedder),
        chat_store=chat_store,
        cache=cache,
        retriever=retriever,
        orchestrator=ChatOrchestrator(cache, retriever, llm, chat_store),
        analysis=AnalysisService(llm, relational, publisher),
    )


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Build services on startup unless they were injected beforehand (tests)."""
    owned = getattr(app.state, "services", None) is None
    if owned:
        settings = load_settings()
        logger.info(f"Starting solvegraph with {settings.masked()}")
        app.state.services = build_services(settings, get_config())
        app.state.services.db.warmup()
    logger.info("Server ready")
    yield
    if owned:
        app.state.services.close()
        app.state.services = None


def get_services(request: Request) -> Services:
    return request.app.state.services


app = FastAPI(title="solvegraph API", lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=False,
    allow_methods=["*"],
    allow_headers=["*"],
)


# =============================================================================
# ERROR RENDERING
# =============================================================================

@app.exception_handler(SolvegraphError)
async def solvegraph_error_handler(request: Request, exc: SolvegraphError):
    log = logger.warning if exc.status_code < 500 else logger.error
    log(f"{request.method} {request.url.path} -> {exc.status_code} [{exc.category}] {exc}")
    return JSONResponse(status_code=exc.status_code, content={"error": exc.public_message})


@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError):
    logger.warning(f"{request.method} {request.url.path} -> 400 [validation] {exc.errors()}")
    return JSONResponse(status_code=400, content={"error": "Invalid payload structure."})


@app.exception_handler(Exception)
async def unhandled_error_handler(request: Request, exc: Exception):
    logger.exception(f"{request.method} {request.url.path} -> 500 [internal] {exc}")
    return JSONResponse(status_code=500, content={"error": "Internal server error"})


# =============================================================================
# ROUTES
# =============================================================================

@app.get("/")
async def root():
    return {"message": "solvegraph API is running"}


@app.get("/health")
async def health():
    return {"status": "healthy"}


@app.post("/api/analyze", response_model=AnalyzeResponse)
def analyze(body: AnalyzeRequest, user: UserIdentity = Depends(get_current_user),
            services: Services = Depends(get_services)):
    return services.analysis.analyze(user, body.link, body.code, body.notes)


async def _signed_delivery(request: Request) -> tuple[bytes, Optional[str]]:
    return await request.body(), request.headers.get(SIGNATURE_HEADER)


@app.post("/api/queue/graph-writer")
async def graph_writer(request: Request, services: Services = Depends(get_services)):
    """Queue consumer: apply one graph job. 401 bad signature, 400 bad payload, 500 store failure."""
    body, signature = await _signed_delivery(request)
    url = services.publisher.destination(services.config.queue.graph_writer_path)
    return await asyncio.to_thread(handle_job, services.verifier, services.graph_engine, body, signature, url)


@app.post("/api/queue/db-writer")
async def db_writer(request: Request, services: Services = Depends(get_services)):
    """Queue consumer: deferred relational write, followed by graph fan-out."""
    body, signature = await _signed_delivery(request)
    url = services.publisher.destination(services.config.queue.db_writer_path)
    return await asyncio.to_thread(handle_analysis_job, services.verifier, services.analysis, body, signature, url)


@app.post("/api/chat", response_model=ChatResponse, response_model_exclude_none=True)
async def chat(body: ChatRequest, background_tasks: BackgroundTasks,
               user: UserIdentity = Depends(get_current_user),
               services: Services = Depends(get_services)):
    turn = await services.orchestrator.respond(user.id, body.message, body.chat_id)
    # Runs after the response has been sent
    background_tasks.add_task(services.orchestrator.persist_in_background, user.id, turn)
    return ChatResponse(reply=turn.reply, chat_id=turn.chat_id, title=turn.title)


@app.get("/api/chats", response_model=list[ChatSummary])
def list_chats(user: UserIdentity = Depends(get_current_user), services: Services = Depends(get_services)):
    return services.chat_store.list_sessions(user.id)


@app.get("/api/chats/{chat_id}", response_model=ChatDetailResponse)
def get_chat(chat_id: str, user: UserIdentity = Depends(get_current_user),
             services: Services = Depends(get_services)):
    if not services.chat_store.session_exists(user.id, chat_id):
        raise NotFoundError(f"Chat {chat_id} not found for user {user.id}", public_message="Chat not found.")
    return {"messages": services.chat_store.get_messages(user.id, chat_id)}


@app.delete("/api/chats/{chat_id}")
def delete_chat(chat_id: str, user: UserIdentity = Depends(get_current_user),
                services: Services = Depends(get_services)):
    if not services.chat_store.delete_session(user.id, chat_id):
        raise NotFoundError(
            f"Chat {chat_id} not found for user {user.id}",
            public_message="Chat not found or you don't have permission to delete it.",
        )
    try:
        services.cache.delete(user.id, chat_id)
    except RedisError as e:
        logger.error(f"History cache delete failed for chat {chat_id}; entry will expire: {e}")
    return {"message": "Chat deleted successfully."}


@app.get("/api/graph")
def get_graph(user: UserIdentity = Depends(get_current_user), services: Services = Depends(get_services)):
    return services.db.get_user_graph(user.id)


@app.post("/admin/init-graph")
def init_graph(_admin: UserIdentity = Depends(require_admin), services: Services = Depends(get_services)):
    statements = services.db.init_schema(
        services.config.models.embedding_dimensions, services.config.retrieval.indexes,
    )
    return {"success": True, "statements": len(statements)}


if __name__ == "__main__":
    import uvicorn
    uvicorn.run("solvegraph.main:app", host="0.0.0.0", port=int(os.getenv("PORT", "8000")))
