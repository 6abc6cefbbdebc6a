"""Bootstrap steps for Windows targets, run through PowerShell remoting."""
from __future__ import annotations

from ..models import Step
from ..transport.winrm import WINDOWS_ADMIN_USER, quote_ps_literal

DETAIL_CHARS = 300
SET_PASSWORD_LABEL = "Set admin password"

ENABLE_RDP = r"""
Set-ItemProperty -Path 'HKLM:\System\CurrentControlSet\Control\Terminal Server' -Name 'fDenyTSConnections' -Value 0
Enable-NetFirewallRule -DisplayGroup 'Remote Desktop' -ErrorAction SilentlyContinue
Write-Output 'RDP enabled'
"""

# PortableGit is a self-extracting archive; the regular installer hangs without a desktop session.
INSTALL_GIT = r"""
$gitDir = 'C:\Program Files\Git'
if (Test-Path "$gitDir\bin\bash.exe") { Write-Output 'Git already installed'; return }
[Net.ServicePointManager]::SecurityProtocol = [Net.SecurityProtocolType]::Tls12
Write-Output 'Downloading PortableGit...'
$url = 'https://github.com/git-for-windows/git/releases/download/v2.47.1.windows.2/PortableGit-2.47.1.2-64-bit.7z.exe'
$exePath = 'C:\portablegit.7z.exe'
Invoke-WebRequest -Uri $url -OutFile $exePath -UseBasicParsing
Write-Output 'Extracting...'
New-Item -ItemType Directory -Path $gitDir -Force -ErrorAction SilentlyContinue | Out-Null
& $exePath -o"$gitDir" -y 2>&1 | Select-Object -Last 2
Start-Sleep -Seconds 5
Remove-Item $exePath -Force -ErrorAction SilentlyContinue
if (Test-Path "$gitDir\bin\bash.exe") {
  Write-Output 'Git installed (bash.exe OK)'
} else {
  Write-Output 'WARNING: Git install may have failed'
}
"""

INSTALL_NODE = r"""
if (Get-Command node -ErrorAction SilentlyContinue) { Write-Output 'Node.js already installed'; return }
[Net.ServicePointManager]::SecurityProtocol = [Net.SecurityProtocolType]::Tls12
Write-Output 'Downloading Node.js...'
Invoke-WebRequest -Uri 'https://nodejs.org/dist/v22.14.0/node-v22.14.0-x64.msi' -OutFile C:\node-installer.msi -UseBasicParsing
Write-Output 'Installing Node.js...'
Start-Process msiexec.exe -ArgumentList '/i C:\node-installer.msi /qn /norestart ADDLOCAL=ALL' -Wait -NoNewWindow
Remove-Item C:\node-installer.msi -Force -ErrorAction SilentlyContinue
Write-Output 'Node.js installed'
"""

CONFIGURE_PATH = r"""
$p = [System.Environment]::GetEnvironmentVariable('Path','Machine')
$changed = $false
if ($p -notlike '*Git\cmd*') { $p = 'C:\Program Files\Git\cmd;' + $p; $changed = $true }
if ($p -notlike '*Git\bin*') { $p = 'C:\Program Files\Git\bin;' + $p; $changed = $true }
if ($p -notlike '*nodejs*') { $p = 'C:\Program Files\nodejs;' + $p; $changed = $true }
if ($changed) { [System.Environment]::SetEnvironmentVariable('Path', $p, 'Machine') }
$gitBash = 'C:\Program Files\Git\bin\bash.exe'
[System.Environment]::SetEnvironmentVariable('CLAUDE_CODE_GIT_BASH_PATH', $gitBash, 'Machine')
Write-Output "PATH updated, CLAUDE_CODE_GIT_BASH_PATH=$gitBash"
"""

SESSION_PATH = r"$env:Path = 'C:\Program Files\nodejs;C:\Program Files\Git\cmd;C:\Program Files\Git\bin;' + [System.Environment]::GetEnvironmentVariable('Path','Machine')"

INSTALL_CLAUDE_CODE = SESSION_PATH + r"""
Write-Output 'Installing Claude Code...'
& 'C:\Program Files\nodejs\npm.cmd' install -g @anthropic-ai/claude-code 2>&1 | Select-Object -Last 5
$npmGlobal = & 'C:\Program Files\nodejs\npm.cmd' prefix -g 2>&1
$p = [System.Environment]::GetEnvironmentVariable('Path','Machine')
if ($p -notlike ('*' + $npmGlobal + '*')) {
  $p = $npmGlobal + ';' + $p
  [System.Environment]::SetEnvironmentVariable('Path', $p, 'Machine')
}
Write-Output 'Claude Code installed'
"""

INSTALL_CLINE = SESSION_PATH + r"""
Write-Output 'Installing Cline CLI...'
& 'C:\Program Files\nodejs\npm.cmd' install -g cline 2>&1 | Select-Object -Last 5
Write-Output 'Cline CLI installed'
"""

INSTALL_LAUNCHER = SESSION_PATH + r"""
$launcherDir = 'C:\claude-launcher-web'
if (Test-Path "$launcherDir\server.js") { Write-Output 'Launcher Web already installed'; return }

Write-Output 'Cloning Claude Launcher Web...'
& 'C:\Program Files\Git\cmd\git.exe' clone https://github.com/lucasaugustodev/claude-launcher-web.git $launcherDir 2>&1 | Select-Object -Last 3
if (-not (Test-Path "$launcherDir\server.js")) { Write-Output 'ERROR: Clone failed'; return }

Write-Output 'Installing npm dependencies...'
Set-Location $launcherDir
& 'C:\Program Files\nodejs\npm.cmd' install --production 2>&1 | Select-Object -Last 3

$taskName = 'ClaudeLauncherWeb'
$nodeExe = 'C:\Program Files\nodejs\node.exe'
$action = New-ScheduledTaskAction -Execute $nodeExe -Argument 'server.js' -WorkingDirectory $launcherDir
$trigger = New-ScheduledTaskTrigger -AtStartup
$settings = New-ScheduledTaskSettingsSet -RestartCount 3 -RestartInterval (New-TimeSpan -Minutes 1) -StartWhenAvailable -DontStopIfGoingOnBatteries
$principal = New-ScheduledTaskPrincipal -UserId 'SYSTEM' -LogonType ServiceAccount -RunLevel Highest
Unregister-ScheduledTask -TaskName $taskName -Confirm:$false -ErrorAction SilentlyContinue
Register-ScheduledTask -TaskName $taskName -Action $action -Trigger $trigger -Settings $settings -Principal $principal | Out-Null

$updateTaskName = 'ClaudeLauncherWebUpdate'
$psExe = 'C:\Windows\System32\WindowsPowerShell\v1.0\powershell.exe'
$updateScript = Join-Path $launcherDir 'update.ps1'
$updateAction = New-ScheduledTaskAction -Execute $psExe -Argument ('-NoProfile -ExecutionPolicy Bypass -File "' + $updateScript + '"') -WorkingDirectory $launcherDir
$updateTrigger = New-ScheduledTaskTrigger -Once -At (Get-Date) -RepetitionInterval (New-TimeSpan -Minutes 10)
$updateSettings = New-ScheduledTaskSettingsSet -StartWhenAvailable -DontStopIfGoingOnBatteries -ExecutionTimeLimit (New-TimeSpan -Minutes 5)
$updatePrincipal = New-ScheduledTaskPrincipal -UserId 'SYSTEM' -LogonType ServiceAccount -RunLevel Highest
Unregister-ScheduledTask -TaskName $updateTaskName -Confirm:$false -ErrorAction SilentlyContinue
Register-ScheduledTask -TaskName $updateTaskName -Action $updateAction -Trigger $updateTrigger -Settings $updateSettings -Principal $updatePrincipal | Out-Null

New-NetFirewallRule -DisplayName 'Claude Launcher Web' -Direction Inbound -LocalPort __PORT__ -Protocol TCP -Action Allow -ErrorAction SilentlyContinue | Out-Null

Start-ScheduledTask -TaskName $taskName
Start-Sleep -Seconds 3
Write-Output 'Claude Launcher Web installed with auto-update (every 10 min) on port __PORT__'
"""

CREATE_SHORTCUTS = r"""
$lines = @('@echo off','title Claude Code','echo ========================================','echo   Claude Code - First Run','echo ========================================','echo.','echo Follow the instructions to sign in.','echo.','claude','pause')
$bat = $lines -join [Environment]::NewLine
Set-Content -Path 'C:\Users\Public\Desktop\Start Claude.bat' -Value $bat -Encoding ASCII
$dir = 'C:\Users\Administrator\AppData\Roaming\Microsoft\Windows\Start Menu\Programs\Startup'
if (-not (Test-Path $dir)) { New-Item -ItemType Directory -Path $dir -Force | Out-Null }
Set-Content -Path (Join-Path $dir 'Start Claude.bat') -Value $bat -Encoding ASCII
Write-Output 'Shortcuts created'
"""


def _change_password_command(new_password: str) -> str:
    return (
        f"net user {WINDOWS_ADMIN_USER} '{quote_ps_literal(new_password)}'\n"
        "Write-Output 'Password changed'\n"
    )


def windows_steps(admin_password: str | None = None, launcher_port: int = 3001) -> list[Step]:
    """Steps for a Windows target.

    The password change comes last: it invalidates the credentials every
    earlier step connects with.
    """
    steps = [
        Step(label="Enable RDP", command=ENABLE_RDP),
        Step(label="Install Git", command=INSTALL_GIT, timeout=300),
        Step(label="Install Node.js", command=INSTALL_NODE, timeout=180),
        Step(label="Configure PATH and env vars", command=CONFIGURE_PATH),
        Step(label="Install Claude Code", command=INSTALL_CLAUDE_CODE, timeout=300),
        Step(label="Install Cline CLI", command=INSTALL_CLINE, timeout=180),
        Step(
            label="Install Claude Launcher Web",
            command=INSTALL_LAUNCHER.replace("__PORT__", str(launcher_port)),
            timeout=300,
        ),
        Step(label="Create desktop shortcuts", command=CREATE_SHORTCUTS, timeout=60),
    ]
    if admin_password:
        steps.append(Step(label=SET_PASSWORD_LABEL, command=_change_password_command(admin_password)))
    return steps
