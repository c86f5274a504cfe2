#!/usr/bin/env python3
"""Start the storefront services locally with uvicorn (MongoDB must already be running)."""
import os
import sys
import subprocess
import time
import platform
import argparse
import socket

# --- Configuration ---
SERVICES = {
    "products-service": ("nutrastore.products_service.main:app", 8002),
    "orders-service": ("nutrastore.orders_service.main:app", 8003),
    "api-gateway": ("nutrastore.api_gateway.main:app", 8000),
}

# --- Colors ---
class Colors:
    HEADER = '\033[95m'
    BLUE = '\033[94m'
    GREEN = '\033[92m'
    WARNING = '\033[93m'
    FAIL = '\033[91m'
    ENDC = '\033[0m'
    BOLD = '\033[1m'

if platform.system() == "Windows":
    os.system('color')  # Enable ANSI colors in Windows terminal

def log(msg, color=Colors.ENDC, bold=False):
    prefix = Colors.BOLD if bold else ""
    print(f"{prefix}{color}{msg}{Colors.ENDC}")

def port_in_use(port):
    try:
        with socket.create_connection(("localhost", port), timeout=1):
            return True
    except OSError:
        return False

def start_services(reload=False):
    log("[1/2] Starting services...", Colors.BLUE, bold=True)
    env = dict(os.environ)
    env.setdefault("PRODUCTS_SERVICE_URL", f"http://localhost:{SERVICES['products-service'][1]}")
    env.setdefault("ORDERS_SERVICE_URL", f"http://localhost:{SERVICES['orders-service'][1]}")

    processes = []
    for name, (target, port) in SERVICES.items():
        if port_in_use(port):
            log(f"✗ {name}: port {port} already in use", Colors.FAIL)
            stop_services(processes)
            sys.exit(1)
        cmd = [sys.executable, "-m", "uvicorn", target, "--port", str(port)]
        if reload:
            cmd.append("--reload")
        processes.append((name, subprocess.Popen(cmd, env=env)))
        log(f"✓ {name} on port {port}", Colors.GREEN)
    return processes

def wait_for_ports(max_retries=30):
    log("\n[2/2] Verifying services...", Colors.BLUE, bold=True)
    for name, (_, port) in SERVICES.items():
        healthy = False
        for _ in range(max_retries):
            if port_in_use(port):
                healthy = True
                break
            time.sleep(1)
        log(f"{name}: {'UP' if healthy else 'TIMEOUT'}", Colors.GREEN if healthy else Colors.FAIL)

def stop_services(processes):
    for name, process in processes:
        process.terminate()
    for name, process in processes:
        process.wait()
        log(f"✓ {name} stopped", Colors.GREEN)

def main():
    parser = argparse.ArgumentParser(description="Start the NutraStore services")
    parser.add_argument("--reload", action="store_true", help="Restart services on code changes")
    args = parser.parse_args()

    processes = start_services(reload=args.reload)
    wait_for_ports()

    log(f"\n- API Gateway: {Colors.BLUE}http://localhost:8000{Colors.ENDC}")
    log(f"- Swagger UI:  {Colors.BLUE}http://localhost:8002/docs{Colors.ENDC} (products), "
        f"{Colors.BLUE}http://localhost:8003/docs{Colors.ENDC} (orders)")
    log("\nPress Ctrl+C to stop.", Colors.HEADER)

    try:
        while all(process.poll() is None for _, process in processes):
            time.sleep(1)
        log("A service exited, shutting down.", Colors.WARNING)
    except KeyboardInterrupt:
        pass
    stop_services(processes)

if __name__ == "__main__":
    main()
