"""
Node bootstrap payload and cloud-init rendering.

Each node is created with a user-data script that installs nuclei, writes
its slice of targets, runs the scan and reports back to the orchestrator
over the node callback contract:

    POST /api/heartbeat/{job_id}/{node_id}   {"progress", "current_item", "message"}
    POST /api/results/{job_id}/{node_id}     one nuclei JSON line per call
    POST /api/complete/{job_id}/{node_id}    (no body)
"""
from __future__ import annotations

import base64
import shlex
from dataclasses import dataclass, field

NUCLEI_VERSION = "3.0.4"


@dataclass(frozen=True)
class BootstrapPayload:
    """Everything a node needs to run its chunk and call home."""
    job_id: str
    node_id: str
    callback_address: str
    items: tuple[str, ...] = field(default_factory=tuple)

    def __post_init__(self):
        if not isinstance(self.items, tuple):
            object.__setattr__(self, "items", tuple(self.items))

    @property
    def items_b64(self) -> str:
        return base64.b64encode("\n".join(self.items).encode("utf-8")).decode("ascii")

    def callback_url(self, kind: str) -> str:
        return f"http://{self.callback_address}/api/{kind}/{self.job_id}/{self.node_id}"


_USER_DATA_TEMPLATE = """#!/bin/bash
export DEBIAN_FRONTEND=noninteractive

apt-get update
apt-get install -y curl wget unzip jq

wget -q https://github.com/projectdiscovery/nuclei/releases/download/v{nuclei}/nuclei_{nuclei}_linux_amd64.zip
unzip -o nuclei_{nuclei}_linux_amd64.zip
mv nuclei /usr/local/bin/
nuclei -update-templates -silent || true

export SCAN_ID={job_id}
export WORKER_ID={node_id}
export HEARTBEAT_URL={heartbeat}
export RESULTS_URL={results}
export COMPLETE_URL={complete}
export DOMAINS_B64={items_b64}

echo "$DOMAINS_B64" | base64 -d > /root/domains.txt
TOTAL=$(wc -l < /root/domains.txt)
TOTAL=$((TOTAL + 1))

post_heartbeat() {{
    curl -s -X POST -H "Content-Type: application/json" \\
        -d "{{\\"progress\\": $1, \\"current_item\\": \\"$2\\", \\"message\\": \\"$3\\"}}" \\
        "$HEARTBEAT_URL" || true
}}

post_heartbeat 0 "" "starting"

touch /root/results.json
tail -n +1 -F /root/results.json | while read -r line; do
    curl -s -X POST -H "Content-Type: application/json" -d "$line" "$RESULTS_URL" || true
done &
STREAMER=$!

DONE=0
while read -r domain || [ -n "$domain" ]; do
    nuclei -u "$domain" -jsonl -silent >> /root/results.json
    DONE=$((DONE + 1))
    post_heartbeat $((DONE * 100 / TOTAL)) "$domain" "scanned"
done < /root/domains.txt

sleep 10
kill $STREAMER || true
curl -s -X POST "$COMPLETE_URL" || true
"""


def render_user_data(payload: BootstrapPayload) -> str:
    """Render the cloud-init script for one node."""
    return _USER_DATA_TEMPLATE.format(
        nuclei=NUCLEI_VERSION,
        job_id=shlex.quote(payload.job_id),
        node_id=shlex.quote(payload.node_id),
        heartbeat=shlex.quote(payload.callback_url("heartbeat")),
        results=shlex.quote(payload.callback_url("results")),
        complete=shlex.quote(payload.callback_url("complete")),
        items_b64=payload.items_b64,
    )
