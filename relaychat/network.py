import asyncio
import json


class RelayConnection:
    """JSON-line connection to the relay server."""

    def __init__(self, config):
        self.config = config
        self.reader = None
        self.writer = None
        self.connected = False

    async def connect(self):
        if self.connected:
            return True
        ssl_ctx = self.config.ssl_context()
        try:
            self.reader, self.writer = await asyncio.open_connection(
                self.config.server_host,
                self.config.server_port,
                ssl=ssl_ctx,
                server_hostname=self.config.tls_server_name if ssl_ctx else None,
            )
        except OSError as e:
            print("[NETWORK ERROR]", e)
            await self.close()
            return False
        self.connected = True
        return True

    async def send(self, data):
        if not self.connected or self.writer is None:
            raise ConnectionError("Not connected to server")
        self.writer.write((json.dumps(data, ensure_ascii=False) + "\n").encode("utf-8"))
        await self.writer.drain()

    async def frames(self):
        """Yield raw inbound lines until the server closes the connection."""
        if self.reader is None:
            return
        try:
            while True:
                line = await self.reader.readline()
                if not line:
                    break
                line = line.strip()
                if line:
                    yield line
        except (ConnectionResetError, BrokenPipeError, OSError) as e:
            print("[READER ERROR]", e)
        finally:
            self.connected = False

    async def close(self):
        self.connected = False
        writer, self.writer = self.writer, None
        self.reader = None
        if writer is not None:
            writer.close()
            try:
                await writer.wait_closed()
            except (ConnectionResetError, BrokenPipeError, OSError):
                pass
