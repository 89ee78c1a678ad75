from __future__ import annotations

# Registry / release host reads and auth checks
REGISTRY_TIMEOUT_SECONDS = 60.0
GH_TIMEOUT_SECONDS = 60.0

# Release creation uploads every artifact
GH_UPLOAD_TIMEOUT_SECONDS = 30 * 60.0

# Publishing packs and uploads a package
PUBLISH_TIMEOUT_SECONDS = 15 * 60.0

# Delay between propagation polls after the first one
PROPAGATION_POLL_SECONDS = 5.0
