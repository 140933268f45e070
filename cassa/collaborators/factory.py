"""Backend selection from the app configuration."""
from cassa.collaborators import OrderBackend


def build_backend(config, session=None) -> OrderBackend:
    """
    Build the OrderBackend named by ORDER_BACKEND.

    Args:
        config: Flask config (or any mapping)
        session: SQLAlchemy session, required by the sql backend

    Raises:
        ValueError: Unknown backend name or missing session
    """
    name = (config.get('ORDER_BACKEND') or 'sql').lower()

    if name == 'sql':
        from cassa.collaborators.sql_backend import SqlOrderBackend
        if session is None:
            raise ValueError("The sql backend needs a database session")
        return SqlOrderBackend(session)

    if name == 'http':
        from cassa.collaborators.http_backend import HttpOrderBackend
        return HttpOrderBackend(
            base_url=config.get('ORDER_API_URL'),
            timeout=float(config.get('COLLABORATOR_TIMEOUT', 10)),
            api_token=config.get('ORDER_API_TOKEN'),
        )

    raise ValueError(f"Unknown ORDER_BACKEND: {name}")
