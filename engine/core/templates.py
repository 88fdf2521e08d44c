"""Starter content for newly created apps."""

from __future__ import annotations

import html


def default_app_html(name: str) -> str:
    """
    Minimal guest page: listens for `init` and signals `ready` to the host.
    """
    title = html.escape(name)
    return f"""<!DOCTYPE html>
<html>
<head>
  <meta charset="UTF-8">
  <title>{title}</title>
  <style>
    body {{ font-family: sans-serif; padding: 20px; }}
  </style>
</head>
<body>
  <h1>{title}</h1>
  <p>Edit this app to get started.</p>
  <script>
    // Listen for init message from parent
    window.addEventListener('message', (e) => {{
      if (e.data.type === 'init') {{
        console.log('App initialized with:', e.data);
        // Your app logic here
      }}
    }});

    // Signal ready
    window.parent.postMessage({{ type: 'ready' }}, '*');
  </script>
</body>
</html>"""
