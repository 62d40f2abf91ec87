"""Boot and shutdown helpers for the backend clients used by the runners and the API."""

from shared.clients.ClientInterface import ClientInterface


async def boot_clients(clients: list[ClientInterface], logger) -> None:
    """Boot every client and check that its backend answers.

    Raises:
        ConnectionError: If a backend is unreachable or answers with an error status.
    """
    for client in clients:
        try:
            await client.boot()
            await client.check_health()
        except Exception as exc:
            raise ConnectionError(
                f"{client.get_client_type().upper()} client '{client.get_engine_name()}' is not reachable: {exc}"
            ) from exc
        logger.info("%s client '%s' booted.", client.get_client_type().upper(), client.get_engine_name())


async def close_clients(clients: list[ClientInterface]) -> None:
    for client in clients:
        await client.close()
