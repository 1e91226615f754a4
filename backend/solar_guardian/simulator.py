import time, random, argparse, json, urllib.request


def post(api, path, payload):
    req = urllib.request.Request(api + path, data=json.dumps(payload).encode('utf-8'), headers={'Content-Type': 'application/json'})
    with urllib.request.urlopen(req, timeout=10) as resp:
        return json.loads(resp.read().decode())


def build_payload(device_id, rng=random, panels=3):
    """One synthetic INA219 sample for a string of ``panels`` series panels."""
    voltage = max(rng.gauss(6.8, 0.6), 0.0) * panels
    current = max(rng.gauss(45.0, 8.0), 0.0)
    return {"device_id": device_id, "voltage": round(voltage, 3), "current": round(current, 2),
            "power": round(voltage * current, 1)}


def main(argv=None):
    p = argparse.ArgumentParser(description="Stream fake ESP32 readings to the sensor-update endpoint")
    p.add_argument('--api', default='http://localhost:8000')
    p.add_argument('--device', action='append', help='device id, repeatable (default ESP_01)')
    p.add_argument('--panels', type=int, default=3)
    p.add_argument('--rate', type=float, default=5.0)
    args = p.parse_args(argv)
    devices = args.device or ['ESP_01']
    print(f"Streaming to {args.api} for {', '.join(devices)} every {args.rate}s... CTRL+C to stop")
    while True:
        for device_id in devices:
            payload = build_payload(device_id, panels=args.panels)
            try: post(args.api, "/api/panels/sensor-update", payload); print("Sent", payload)
            except Exception as e: print("Error:", e)
        time.sleep(args.rate)


if __name__ == "__main__": main()
