"""
Stand-in upstream for the proxy tests.
A small Flask app served by werkzeug on an ephemeral localhost port.
"""
import re
import threading
import time

from flask import Flask, Response, jsonify, redirect, request
from werkzeug.serving import make_server

MEDIA_BYTES = bytes(range(256)) * 4
MEDIA_BYTES = MEDIA_BYTES[:1000]

SLOW_SECONDS = 2

# /drip sends DRIP_BYTES one at a time, DRIP_INTERVAL apart
DRIP_BYTES = b"<html>\n"
DRIP_INTERVAL = 0.4

# /media/broken.mp4 fails after this many bytes
BROKEN_AFTER = 300

SPACED_MANIFEST = "#EXTM3U\n#EXTINF:10,\nseg 0.ts\n"

MASTER_MANIFEST = "#EXTM3U\n#EXTINF:10,\nseg0.ts\nseg1.ts"

KEYED_MANIFEST = (
    "#EXTM3U\n"
    "#EXT-X-VERSION:3\n"
    "#EXT-X-TARGETDURATION:10\n"
    '#EXT-X-KEY:METHOD=AES-128,URI="keys/k1.bin",IV=0x1234\n'
    "#EXTINF:10.0,\n"
    "seg0.ts\n"
    "#EXTINF:10.0,\n"
    "/abs/seg1.ts\n"
    '#EXT-X-KEY:METHOD=AES-128,URI="https://keys.example/k2.bin"\n'
    "#EXTINF:10.0,\n"
    "https://media.example/seg2.ts\n"
    "#EXT-X-ENDLIST\n"
)

PAGE_HTML = '''<!DOCTYPE html>
<html>
<head>
<title>Player</title>
<link rel="stylesheet" href="css/player.css">
<script src="https://cdn.example/lib/hls.min.js"></script>
<script src="scripts/app.js"></script>
</head>
<body>
<video poster="/images/poster.jpg"></video>
<img src="data:image/gif;base64,R0lGODlhAQABAAAAACw=">
<a href="#top">top</a>
<script>var source = "https://media.example/master.m3u8";</script>
</body>
</html>
'''

EMBED_HTML = '''<html><head><script src="/js/player.js"></script></head><body><div id="player"></div></body></html>'''

STYLESHEET = '''@import "base.css";
body { background: url(../img/bg.png); }
.logo { background-image: url("data:image/png;base64,AAAA"); }
'''


def create_upstream_app():
    app = Flask('upstream_double')

    @app.route('/echo-headers')
    def echo_headers():
        return jsonify(dict(request.headers))

    @app.route('/path/master.m3u8')
    def master_manifest():
        return Response(MASTER_MANIFEST, mimetype='application/vnd.apple.mpegurl')

    @app.route('/path/keyed.m3u8')
    def keyed_manifest():
        return Response(KEYED_MANIFEST, mimetype='application/vnd.apple.mpegurl')

    @app.route('/plain/list.m3u8')
    def plain_manifest():
        return Response(MASTER_MANIFEST, mimetype='text/plain')

    @app.route('/media/clip.mp4')
    def media():
        range_header = request.headers.get('Range')
        if not range_header:
            resp = Response(MEDIA_BYTES, mimetype='video/mp4')
            resp.headers['Accept-Ranges'] = 'bytes'
            return resp

        match = re.match(r'bytes=(\d+)-(\d*)', range_header)
        start = int(match.group(1))
        end = int(match.group(2)) if match.group(2) else len(MEDIA_BYTES) - 1
        resp = Response(MEDIA_BYTES[start:end + 1], status=206, mimetype='video/mp4')
        resp.headers['Content-Range'] = f'bytes {start}-{end}/{len(MEDIA_BYTES)}'
        resp.headers['Accept-Ranges'] = 'bytes'
        return resp

    @app.route('/forbidden')
    def forbidden():
        return Response('<html><body>Access denied by upstream</body></html>', status=403, mimetype='text/html')

    @app.route('/server-error')
    def server_error():
        return Response('upstream exploded', status=500, mimetype='text/plain')

    @app.route('/redirect/<int:count>')
    def redirect_chain(count):
        if count <= 1:
            return redirect('/docs/final/page.html')
        return redirect(f'/redirect/{count - 1}')

    @app.route('/loop')
    def loop():
        return redirect('/loop')

    @app.route('/slow')
    def slow():
        time.sleep(SLOW_SECONDS)
        return 'late'

    @app.route('/drip')
    def drip():
        def generate():
            for i in range(len(DRIP_BYTES)):
                time.sleep(DRIP_INTERVAL)
                yield DRIP_BYTES[i:i + 1]
        return Response(generate(), mimetype='text/html')

    @app.route('/media/broken.mp4')
    def broken_media():
        def generate():
            yield MEDIA_BYTES[:BROKEN_AFTER]
            raise RuntimeError('upstream died mid-stream')
        return Response(generate(), mimetype='video/mp4')

    @app.route('/files/list.m3u8')
    def spaced_manifest():
        return Response(SPACED_MANIFEST, mimetype='application/vnd.apple.mpegurl')

    @app.route('/files/<path:name>')
    def named_file(name):
        return Response(f'file:{name}', mimetype='video/mp2t')

    @app.route('/docs/final/page.html')
    def page():
        return Response(PAGE_HTML, mimetype='text/html')

    @app.route('/embed-2/e-1/<embed_id>')
    def embed_page(embed_id):
        return Response(EMBED_HTML.replace('player', f'player-{embed_id}', 1), mimetype='text/html')

    @app.route('/style/main.css')
    def stylesheet():
        return Response(STYLESHEET, mimetype='text/css')

    @app.route('/cookies')
    def cookies():
        resp = Response('cookie jar', mimetype='text/plain')
        resp.set_cookie('session', 'abc')
        resp.set_cookie('theme', 'dark')
        resp.headers['Content-Security-Policy'] = "default-src 'self'"
        resp.headers['X-Frame-Options'] = 'DENY'
        resp.headers['Cache-Control'] = 'max-age=60'
        return resp

    return app


class UpstreamDouble:
    """Runs the upstream app in a background thread."""

    def __init__(self):
        self.app = create_upstream_app()
        self.server = make_server('127.0.0.1', 0, self.app, threaded=True)
        self.base_url = f'http://127.0.0.1:{self.server.server_port}'
        self.thread = threading.Thread(target=self.server.serve_forever, daemon=True)

    def start(self):
        self.thread.start()
        return self

    def stop(self):
        self.server.shutdown()
        self.thread.join(timeout=5)

    def url(self, path):
        return self.base_url + path
