"""Bootstrap steps for Linux targets, run over SSH as root."""
from __future__ import annotations

from ..models import Step

LAUNCHER_REPO = "https://github.com/lucasaugustodev/claude-launcher-web.git"
LAUNCHER_DIR = "/opt/claude-launcher-web"
DETAIL_CHARS = 200

INSTALL_GIT = """bash -c 'if command -v git &>/dev/null; then echo "Git: $(git --version)"; exit 0; fi; \
echo "Installing Git..."; \
if command -v apt-get &>/dev/null; then export DEBIAN_FRONTEND=noninteractive && apt-get update -y && apt-get install -y git; \
elif command -v dnf &>/dev/null; then dnf install -y git; \
elif command -v yum &>/dev/null; then yum install -y git; fi; \
echo "Git: $(git --version 2>/dev/null || echo failed)"'"""

INSTALL_NODE = """bash -c 'if command -v node &>/dev/null; then echo "Node: $(node --version)"; exit 0; fi; \
echo "Installing Node.js..."; \
if command -v apt-get &>/dev/null; then curl -fsSL https://deb.nodesource.com/setup_22.x | bash - && apt-get install -y nodejs; \
elif command -v dnf &>/dev/null; then curl -fsSL https://rpm.nodesource.com/setup_22.x | bash - && dnf install -y nodejs; fi; \
echo "Node: $(node --version 2>/dev/null || echo failed)"'"""

INSTALL_CLAUDE_CODE = """bash -c 'if ! command -v npm &>/dev/null; then echo "npm not found"; exit 1; fi; \
echo "Installing Claude Code..."; npm install -g @anthropic-ai/claude-code 2>&1 | tail -3; \
echo "Claude: $(claude --version 2>/dev/null || echo check PATH)"'"""

INSTALL_CLINE = """bash -c 'echo "Installing Cline CLI..."; npm install -g cline 2>&1 | tail -3; \
echo "Cline: $(cline --version 2>/dev/null || echo check PATH)"'"""


def _launcher_command(port: int) -> str:
    # Runs as a dedicated non-root user; bypass mode refuses to run as root.
    return f"""bash -c '
set -e
if [ -f {LAUNCHER_DIR}/server.js ]; then echo "Launcher Web already installed"; exit 0; fi

if ! id claude &>/dev/null; then
  useradd -m -s /bin/bash claude
  echo "claude ALL=(ALL) NOPASSWD: ALL" > /etc/sudoers.d/claude
  chmod 440 /etc/sudoers.d/claude
  echo "User claude created with sudo for package installs"
fi

echo "Cloning Claude Launcher Web..."
git clone {LAUNCHER_REPO} {LAUNCHER_DIR}
chown -R claude:claude {LAUNCHER_DIR}

cd {LAUNCHER_DIR}
sudo -u claude npm install --production 2>&1 | tail -5
sudo -u claude npm install -g @anthropic-ai/claude-code 2>&1 | tail -3
chmod +x {LAUNCHER_DIR}/update.sh

cat > /etc/systemd/system/claude-launcher-web.service << EOSVC
[Unit]
Description=Claude Launcher Web
After=network.target
[Service]
Type=simple
User=claude
Group=claude
WorkingDirectory={LAUNCHER_DIR}
ExecStart=/usr/bin/node server.js
Restart=always
RestartSec=5
Environment=PORT={port}
Environment=HOME=/home/claude
[Install]
WantedBy=multi-user.target
EOSVC

cat > /etc/systemd/system/claude-launcher-update.service << EOSVC
[Unit]
Description=Claude Launcher Web Auto-Update
[Service]
Type=oneshot
User=claude
Group=claude
WorkingDirectory={LAUNCHER_DIR}
ExecStart={LAUNCHER_DIR}/update.sh
Environment=HOME=/home/claude
EOSVC

cat > /etc/systemd/system/claude-launcher-update.timer << EOSVC
[Unit]
Description=Auto-update Claude Launcher Web every 10 minutes
[Timer]
OnBootSec=2min
OnUnitActiveSec=10min
[Install]
WantedBy=timers.target
EOSVC

systemctl daemon-reload
systemctl enable claude-launcher-web
systemctl start claude-launcher-web
systemctl enable claude-launcher-update.timer
systemctl start claude-launcher-update.timer
ufw allow {port}/tcp 2>/dev/null || firewall-cmd --permanent --add-port={port}/tcp 2>/dev/null && firewall-cmd --reload 2>/dev/null || iptables -I INPUT -p tcp --dport {port} -j ACCEPT 2>/dev/null || true
sleep 2
echo "Claude Launcher Web installed on port {port} (as user claude)"
'"""


def linux_steps(launcher_port: int = 3001) -> list[Step]:
    return [
        Step(label="Install Git", command=INSTALL_GIT, timeout=120),
        Step(label="Install Node.js", command=INSTALL_NODE, timeout=180),
        Step(label="Install Claude Code", command=INSTALL_CLAUDE_CODE, timeout=300),
        Step(label="Install Cline CLI", command=INSTALL_CLINE, timeout=180),
        Step(label="Install Claude Launcher Web", command=_launcher_command(launcher_port), timeout=300),
    ]
