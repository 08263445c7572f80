"""Replay page construction for the render orchestrator.

The page embeds the rrweb runtime, the timeline and a small playback script.
It talks back to the host through a single exposed function,
``window.reelSignal({kind, progress})``.
"""
import json
import os
import urllib.request
from functools import lru_cache
from typing import Any, Dict, List, Optional, Tuple

from sessionreel.config import settings
from sessionreel.constants import RenderStrategy
from sessionreel.utils.logger import logger

SIGNAL_BINDING = "reelSignal"

PAGE_STYLE = """
        * {{ margin: 0; padding: 0; box-sizing: border-box; }}
        html, body {{
            width: {width}px;
            height: {height}px;
            background: #000;
            overflow: hidden;
        }}
        #replayer {{
            position: relative;
            width: {width}px;
            height: {height}px;
        }}
        .replayer-wrapper iframe {{
            background: #000 !important;
        }}
        .rr-controller {{
            display: none !important;
        }}
        .replayer-mouse-tail {{
            display: {mouse_tail_display};
        }}
        #skip-overlay {{
            position: absolute;
            top: 0;
            left: 0;
            width: 100%;
            height: 100%;
            background: rgba(0, 0, 0, 0.5);
            display: none;
            align-items: center;
            justify-content: center;
            z-index: 9999;
            pointer-events: none;
        }}
        #skip-overlay.active {{
            display: flex;
        }}
        #skip-overlay-text {{
            color: white;
            font-size: 48px;
            font-family: -apple-system, BlinkMacSystemFont, 'Segoe UI', Roboto, sans-serif;
            font-weight: 600;
            text-shadow: 2px 2px 4px rgba(0, 0, 0, 0.5);
        }}
"""

PAGE_TEMPLATE = """
<!DOCTYPE html>
<html>
<head>
    <meta charset="UTF-8">
    <title>Session Replay</title>
    <style>
        {style_content}
    </style>
    <style>
        {page_style}
    </style>
</head>
<body>
    <div id="replayer" class="replayer-wrapper">
        <div id="skip-overlay"><div id="skip-overlay-text">Skipping inactivity...</div></div>
    </div>

    <script>
        {script_content}
    </script>

    <script>
        window.pageReady = false;
        window.loadError = null;
        window.__events = {events_json};
        window.__segments = {segments_json};
        window.__config = {config_json};

        function signal(message) {{
            try {{
                window.{binding}(message);
            }} catch (e) {{
                console.error('Failed to signal host:', e.message);
            }}
        }}

        window.addEventListener('error', function(e) {{
            console.error('[PAGE ERROR]', e.message, 'at', e.filename + ':' + e.lineno);
        }});
        window.addEventListener('unhandledrejection', function(e) {{
            console.error('[UNHANDLED REJECTION]', String(e.reason));
        }});

        {playback_script}
    </script>
</body>
</html>
"""

# rrweb-player drives playback and honours skipInactive itself
PLAYER_SCRIPT = """
        var checkCount = 0;
        function checkReady() {
            checkCount++;
            if (typeof rrwebPlayer !== 'undefined') {
                window.pageReady = true;
                return;
            }
            if (checkCount < 100) {
                setTimeout(checkReady, 100);
            } else {
                window.loadError = 'Timeout waiting for rrwebPlayer to load';
            }
        }
        checkReady();

        window.startPlayback = function() {
            var config = window.__config;
            try {
                var PlayerClass = rrwebPlayer.default || rrwebPlayer;
                var player = new PlayerClass({
                    target: document.getElementById('replayer'),
                    props: {
                        events: window.__events,
                        width: config.width,
                        height: config.height,
                        autoPlay: true,
                        showController: false,
                        skipInactive: config.skipInactive,
                        speed: config.speed,
                        mouseTail: config.mouseTail
                    }
                });
                var lastProgress = 0;
                player.addEventListener('ui-update-progress', function(e) {
                    var progress = e.payload || 0;
                    if (progress - lastProgress >= 0.05) {
                        lastProgress = progress;
                        signal({kind: 'progress', progress: Math.min(1, progress)});
                    }
                });
                player.addEventListener('finish', function() {
                    signal({kind: 'finish'});
                });
                window.playerInstance = player;
                return true;
            } catch (e) {
                console.error('Failed to create player:', e.message);
                window.loadError = e.message;
                return false;
            }
        };
"""

# Bare rrweb Replayer; a 100ms loop sets the speed from the current segment
SEGMENT_SCRIPT = """
        var checkCount = 0;
        function checkReady() {
            checkCount++;
            if (typeof rrweb !== 'undefined' && rrweb.Replayer) {
                window.pageReady = true;
                return;
            }
            if (checkCount < 100) {
                setTimeout(checkReady, 100);
            } else {
                window.loadError = 'Timeout waiting for rrweb to load';
            }
        }
        checkReady();

        window.startPlayback = function() {
            var config = window.__config;
            try {
                var replayer = new rrweb.Replayer(window.__events, {
                    root: document.getElementById('replayer'),
                    skipInactive: false,
                    speed: config.speed,
                    maxSpeed: config.maxSpeed,
                    mouseTail: config.mouseTail,
                    triggerFocus: true,
                    pauseAnimation: true,
                    UNSAFE_replayCanvas: false,
                    showWarning: false
                });
                window.replayer = replayer;

                var meta = replayer.getMetaData();
                var totalTime = meta.totalTime || 0;
                var segments = window.__segments.map(function(seg) {
                    return {
                        kind: seg.kind,
                        isActive: seg.isActive,
                        start: seg.startTimestamp - meta.startTime,
                        end: seg.endTimestamp - meta.startTime
                    };
                });
                var overlay = document.getElementById('skip-overlay');
                var finished = false;
                var currentIndex = -1;
                var lastProgress = 0;

                function segmentAt(time) {
                    for (var i = 0; i < segments.length; i++) {
                        if (time >= segments[i].start && time <= segments[i].end) {
                            return i;
                        }
                    }
                    return -1;
                }

                function speedFor(segment, time) {
                    if (!segment || segment.isActive) {
                        return config.speed;
                    }
                    if (segment.kind === 'gap') {
                        return config.maxSpeed;
                    }
                    var remainingSeconds = (segment.end - time) / 1000;
                    return Math.min(config.maxSpeed, Math.max(50, remainingSeconds));
                }

                var ticker = setInterval(function() {
                    if (finished) {
                        return;
                    }
                    try {
                        var time = replayer.getCurrentTime();
                        var index = segmentAt(time);
                        var segment = index >= 0 ? segments[index] : null;
                        if (index !== currentIndex) {
                            currentIndex = index;
                            overlay.classList.toggle('active', !!segment && !segment.isActive);
                        }
                        replayer.setConfig({speed: speedFor(segment, time)});

                        var progress = totalTime > 0 ? Math.min(1, time / totalTime) : 0;
                        if (progress - lastProgress >= 0.05) {
                            lastProgress = progress;
                            signal({kind: 'progress', progress: progress});
                        }
                    } catch (e) {
                        console.error('Segment loop error:', e.message);
                    }
                }, 100);

                replayer.on('finish', function() {
                    finished = true;
                    clearInterval(ticker);
                    overlay.classList.remove('active');
                    signal({kind: 'finish'});
                });

                replayer.play(0);
                return true;
            } catch (e) {
                console.error('Failed to initialize Replayer:', e.message);
                window.loadError = e.message;
                return false;
            }
        };
"""


def _read_local(filename: str) -> str:
    path = os.path.join(settings.rrweb_assets_dir, filename)
    with open(path, "r", encoding="utf-8") as f:
        return f.read()


def _fetch(url: str) -> str:
    with urllib.request.urlopen(url, timeout=30) as response:
        return response.read().decode("utf-8")


@lru_cache(maxsize=2)
def load_assets(strategy: str) -> Tuple[str, str]:
    """
    Load the rrweb bundle (JS, CSS) for a playback strategy.

    Reads from ``settings.rrweb_assets_dir`` when set, otherwise fetches from
    jsDelivr. Cached per process.
    """
    if strategy == RenderStrategy.PLAYER:
        files = ("rrweb-player.js", "rrweb-player.css")
        base_url = f"https://cdn.jsdelivr.net/npm/rrweb-player@{settings.rrweb_player_version}/dist"
        urls = (f"{base_url}/index.js", f"{base_url}/style.css")
    else:
        files = ("rrweb.min.js", "rrweb.min.css")
        base_url = f"https://cdn.jsdelivr.net/npm/rrweb@{settings.rrweb_version}/dist"
        urls = (f"{base_url}/rrweb.min.js", f"{base_url}/rrweb.min.css")

    if settings.rrweb_assets_dir:
        logger.info(f"[RENDER] Loading {strategy} assets from {settings.rrweb_assets_dir}")
        return _read_local(files[0]), _read_local(files[1])

    logger.info(f"[RENDER] Fetching {strategy} assets from {base_url}")
    return _fetch(urls[0]), _fetch(urls[1])


def safe_json(value: Any) -> str:
    """JSON for embedding in a <script> element."""
    return json.dumps(value, separators=(",", ":")).replace("</", "<\\/")


def build_page(
    events: List[Dict[str, Any]],
    strategy: str,
    width: int,
    height: int,
    speed: float,
    skip_inactive: bool,
    mouse_tail: Any = False,
    segments: Optional[List[Dict[str, Any]]] = None,
    max_speed: Optional[int] = None,
) -> str:
    """
    Build the replay HTML for a timeline.

    Args:
        events: Timeline events, already compressed
        strategy: RenderStrategy.PLAYER or RenderStrategy.SEGMENTS
        width: Viewport width in pixels
        height: Viewport height in pixels
        speed: Base playback speed
        skip_inactive: Player-side inactivity skipping (player strategy only)
        mouse_tail: False or a mouse tail style dict
        segments: Segment dicts (segments strategy only)
        max_speed: Speed cap while fast-forwarding

    Returns:
        Complete HTML document
    """
    script_content, style_content = load_assets(strategy)
    config = {
        "width": width,
        "height": height,
        "speed": speed,
        "skipInactive": skip_inactive,
        "mouseTail": mouse_tail or False,
        "maxSpeed": max_speed or settings.render_max_speed,
    }
    page_style = PAGE_STYLE.format(
        width=width,
        height=height,
        mouse_tail_display="block" if mouse_tail else "none",
    )
    return PAGE_TEMPLATE.format(
        style_content=style_content,
        page_style=page_style,
        script_content=script_content,
        events_json=safe_json(events),
        segments_json=safe_json(segments or []),
        config_json=safe_json(config),
        binding=SIGNAL_BINDING,
        playback_script=PLAYER_SCRIPT if strategy == RenderStrategy.PLAYER else SEGMENT_SCRIPT,
    )
