import asyncio
import logging
import sys
import os
import traceback
from keypoint_source import MediaPipeKeypointSource
from websocket_server import WebSocketServer


class PostureService:
    def __init__(self):
        print("Initializing Slouch Score Service...", flush=True)

        # Print diagnostic info
        if getattr(sys, 'frozen', False):
            print(f"Running as executable from: {sys._MEIPASS}", flush=True)
            print(f"Executable path: {sys.executable}", flush=True)
        else:
            print(f"Running as script from: {os.path.dirname(__file__)}", flush=True)

        try:
            print("Initializing MediaPipeKeypointSource...", flush=True)
            self.source = MediaPipeKeypointSource()
            print("MediaPipeKeypointSource initialized successfully", flush=True)

            print("Initializing WebSocketServer...", flush=True)
            self.ws_server = WebSocketServer()
            print("WebSocketServer initialized successfully", flush=True)

            # Link keypoint source to WebSocket server
            self.ws_server.source = self.source

            print("Service initialization complete", flush=True)
        except Exception as e:
            print(f"ERROR during initialization: {e}", file=sys.stderr, flush=True)
            print(f"Traceback: {traceback.format_exc()}", file=sys.stderr, flush=True)
            raise

    async def run(self):
        """Run the WebSocket server and wait for client connections."""
        try:
            print(f"Starting WebSocket server on ws://{self.ws_server.host}:{self.ws_server.port}", flush=True)
            # Start WebSocket server (runs indefinitely)
            await self.ws_server.start()
        except asyncio.CancelledError:
            print("Service cancelled", flush=True)
        except Exception as e:
            print(f"ERROR during service runtime: {e}", file=sys.stderr, flush=True)
            print(f"Traceback: {traceback.format_exc()}", file=sys.stderr, flush=True)
            raise
        finally:
            # Camera and models are released even if no cleanup request arrived
            await self.ws_server.close()
            print("Service shutdown complete", flush=True)


if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO, stream=sys.stdout,
                        format='%(asctime)s %(levelname)s %(name)s: %(message)s')
    try:
        service = PostureService()
        asyncio.run(service.run())
    except KeyboardInterrupt:
        print("Service stopped by user", flush=True)
    except Exception as e:
        print(f"FATAL ERROR: {e}", file=sys.stderr, flush=True)
        print(f"Traceback: {traceback.format_exc()}", file=sys.stderr, flush=True)
        sys.exit(1)
