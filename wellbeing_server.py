#!/usr/bin/env python3
"""
Combined ProWellbeing server:
  HTTP on port 8080 — health check for the live room (GET /api/health)
  WebSocket on port 8765 — Live Room relay

Ports come from --http-port / --ws-port, then PORT / WS_PORT, then the
defaults below.
"""
import argparse
import asyncio
import http.server
import json
import logging
import os
import socket
import threading
from datetime import datetime, timezone

import liveroom

logger = logging.getLogger(__name__)

HOST      = '0.0.0.0'
HTTP_PORT = 8080
WS_PORT   = liveroom.WS_PORT


# ── HTTP ─────────────────────────────────────────────────────
def health_payload(relay):
    return {
        'status': 'OK',
        'timestamp': datetime.now(timezone.utc).isoformat().replace('+00:00', 'Z'),
        'liveConnections': relay.active_count(),
    }


class Handler(http.server.BaseHTTPRequestHandler):
    relay = None

    def do_GET(self, body=True):
        path = self.path.split('?')[0]
        if path == '/api/health':
            self._send_json(200, health_payload(self.relay), body)
        else:
            self._send_json(404, {'error': 'Endpoint not found'}, body)

    def do_HEAD(self):
        self.do_GET(body=False)

    def _not_found(self):
        self._send_json(404, {'error': 'Endpoint not found'})

    do_POST = do_PUT = do_PATCH = do_DELETE = _not_found

    def do_OPTIONS(self):
        self.send_response(204)
        self.send_header('Access-Control-Allow-Origin', '*')
        self.send_header('Access-Control-Allow-Methods', 'GET,HEAD,PUT,PATCH,POST,DELETE')
        self.send_header('Access-Control-Allow-Headers', 'Content-Type')
        self.end_headers()

    def _send_json(self, status, payload, body=True):
        data = json.dumps(payload).encode('utf-8')
        self.send_response(status)
        self.send_header('Content-Type', 'application/json')
        self.send_header('Content-Length', str(len(data)))
        self.send_header('Access-Control-Allow-Origin', '*')
        self.end_headers()
        if body:
            self.wfile.write(data)

    def log_message(self, format, *args):
        pass  # suppress per-request logging


def make_http_server(relay, host=HOST, port=HTTP_PORT):
    handler = type('HealthHandler', (Handler,), {'relay': relay})
    return http.server.HTTPServer((host, port), handler)


# ── Config ────────────────────────────────────────────────────
def parse_args(argv=None):
    parser = argparse.ArgumentParser(description='ProWellbeing HTTP + Live Room server')
    parser.add_argument('--host', default=HOST)
    parser.add_argument('--http-port', type=int,
                        default=int(os.environ.get('PORT', HTTP_PORT)))
    parser.add_argument('--ws-port', type=int,
                        default=int(os.environ.get('WS_PORT', WS_PORT)))
    parser.add_argument('--send-timeout', type=float,
                        default=liveroom.send_timeout_from_env(),
                        help='seconds before a stalled live-room send is skipped (default: no limit)')
    return parser.parse_args(argv)


def lan_address():
    try:
        return socket.gethostbyname(socket.gethostname())
    except OSError:
        return '?.?.?.?'


async def main(args):
    relay = liveroom.Relay(send_timeout=args.send_timeout)
    lan_ip = lan_address()

    print(f'HTTP  http://localhost:{args.http_port}     (this machine)')
    print(f'      http://{lan_ip}:{args.http_port}  (LAN)')
    print(f'WS    ws://localhost:{args.ws_port}')
    print(f'      ws://{lan_ip}:{args.ws_port}  (LAN)')
    print(f'Health check: http://localhost:{args.http_port}/api/health')

    # HTTP in a background thread
    http_server = make_http_server(relay, args.host, args.http_port)
    t = threading.Thread(target=http_server.serve_forever, daemon=True)
    t.start()

    # WebSocket in the asyncio loop
    try:
        async with liveroom.serve(relay, args.host, args.ws_port):
            await asyncio.Future()
    finally:
        http_server.shutdown()
        http_server.server_close()
        relay.close()
        logger.info('Server stopped')


def run(argv=None):
    args = parse_args(argv)
    logging.basicConfig(
        level=os.environ.get('LOG_LEVEL', 'INFO'),
        format='%(asctime)s %(levelname)s %(name)s: %(message)s',
    )
    try:
        asyncio.run(main(args))
    except KeyboardInterrupt:
        pass


if __name__ == '__main__':
    run()
