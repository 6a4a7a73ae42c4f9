"""Resolution of the active transcription backend configuration."""

from sqlalchemy import select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from transcriptflow.config import Settings, get_settings
from transcriptflow.core.backends.models import ApiConfig
from transcriptflow.core.backends.schemas import BackendConfig, BackendType
from transcriptflow.core.errors import StorageError
from transcriptflow.core.logging import get_logger

logger = get_logger(__name__)


class ConfigProvider:
    """
    Resolves backend configuration.

    Lookup order:
    1. Active ``api_configs`` row for the backend type
    2. Environment settings, when they carry enough to connect
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        settings: Settings | None = None,
    ):
        self._session_factory = session_factory
        self._settings = settings or get_settings()

    async def get_active_backend_config(self, backend_type: BackendType | str) -> BackendConfig | None:
        """Get the active config for ``backend_type`` or None when nothing usable exists."""
        backend_type = BackendType(backend_type)

        try:
            async with self._session_factory() as session:
                row = (
                    await session.execute(
                        select(ApiConfig)
                        .where(ApiConfig.api_type == backend_type.value, ApiConfig.is_active.is_(True))
                        .order_by(ApiConfig.updated_at.desc())
                        .limit(1)
                    )
                ).scalar_one_or_none()
        except SQLAlchemyError as e:
            raise StorageError(f"Failed to load backend config: {e}", backend_type=backend_type.value) from e

        if row is not None:
            logger.debug("backend_config_resolved", backend_type=backend_type.value, source="database")
            return BackendConfig(
                backend_type=backend_type,
                endpoint=row.api_url,
                credential=row.api_key,
                model=row.model,
                timeout_seconds=row.timeout,
                max_retries=row.max_retries,
            )

        config = self._from_settings(backend_type)
        if config is None:
            logger.warning("backend_config_missing", backend_type=backend_type.value)
        else:
            logger.debug("backend_config_resolved", backend_type=backend_type.value, source="settings")
        return config

    async def save_backend_config(self, config: BackendConfig, activate: bool = True) -> str:
        """Store ``config``; when activating, other rows of the same type are deactivated.

        Returns:
            Id of the stored row
        """
        row = ApiConfig(
            api_type=config.backend_type.value,
            api_url=config.endpoint,
            api_key=config.credential,
            model=config.model,
            timeout=config.timeout_seconds,
            max_retries=config.max_retries,
            is_active=activate,
        )

        try:
            async with self._session_factory() as session:
                async with session.begin():
                    if activate:
                        await session.execute(
                            update(ApiConfig)
                            .where(ApiConfig.api_type == config.backend_type.value)
                            .values(is_active=False)
                        )
                    session.add(row)
        except SQLAlchemyError as e:
            raise StorageError(f"Failed to save backend config: {e}") from e

        logger.info(
            "backend_config_saved",
            backend_type=config.backend_type.value,
            config_id=row.id,
            active=activate,
        )
        return row.id

    async def deactivate_backend_config(self, backend_type: BackendType | str) -> int:
        """Deactivate all stored configs of ``backend_type``. Returns the number of rows changed."""
        backend_type = BackendType(backend_type)
        try:
            async with self._session_factory() as session:
                async with session.begin():
                    result = await session.execute(
                        update(ApiConfig)
                        .where(ApiConfig.api_type == backend_type.value, ApiConfig.is_active.is_(True))
                        .values(is_active=False)
                    )
        except SQLAlchemyError as e:
            raise StorageError(f"Failed to deactivate backend config: {e}") from e

        logger.info("backend_config_deactivated", backend_type=backend_type.value, count=result.rowcount)
        return result.rowcount

    def _from_settings(self, backend_type: BackendType) -> BackendConfig | None:
        s = self._settings
        if backend_type is BackendType.OPENAI:
            if not s.openai_api_key:
                return None
            return BackendConfig(
                backend_type=backend_type,
                endpoint=s.openai_base_url or None,
                credential=s.openai_api_key,
                model=s.openai_model,
                timeout_seconds=s.backend_timeout_seconds,
                max_retries=s.backend_max_retries,
            )

        if not s.custom_api_url:
            return None
        return BackendConfig(
            backend_type=backend_type,
            endpoint=s.custom_api_url,
            credential=s.custom_api_key or None,
            model=s.custom_model,
            timeout_seconds=s.backend_timeout_seconds,
            max_retries=s.backend_max_retries,
        )
