#!/usr/bin/env python3
"""Quick demo of the x402 pay-and-retry flow."""

import json
import time

import requests
from jose import jwt

BASE_URL = "http://localhost:8080"

print("=" * 80)
print(" QUICK x402 DEMO")
print("=" * 80)

# Step 1: Ask without paying and read the challenge
print("\n1. Scanning a contract without payment (should get 402)...")
body = {"address": "0x4200000000000000000000000000000000000006", "chain": "base"}
response = requests.post(f"{BASE_URL}/api/scan-contract", json=body)
print(f"Status: {response.status_code}")
if response.status_code != 402:
    print(f"Unexpected response: {response.text}")
    raise SystemExit(1)

requirement = response.json()["payment"]
print("✅ Payment required")
print(f"   Amount: {requirement['minAmount']} {requirement['asset']} on {requirement['network']}")
print(f"   Receiver: {requirement['receiver']}")

# Step 2: Build a payment token for exactly that requirement
print("\n2. Building payment token...")
token = jwt.encode(
    {
        "sub": "demo-agent",
        "iat": int(time.time()),
        "exp": int(time.time()) + 300,
        "payment": {
            "amount": requirement["minAmount"],
            "asset": requirement["asset"],
            "receiver": requirement["receiver"],
            "network": requirement["network"],
        },
    },
    "demo-secret",
    algorithm="HS256",
)
print(f"   Token: {token[:40]}...")

# Step 3: Retry with the token
print("\n3. Retrying with X-Payment-Response...")
response = requests.post(
    f"{BASE_URL}/api/scan-contract",
    json=body,
    headers={"X-Payment-Response": token}
)
print(f"Status: {response.status_code}")
if response.status_code == 200:
    data = response.json()["data"]
    print("✅ Scan complete!")
    print(f"   Risk score: {data['risk_score']} ({data['threat_level']})")
    print(f"   Safe: {data['safe']}")
    print(f"   Source: {data['data_source']}")
else:
    print(f"Response: {json.dumps(response.json(), indent=2)}")

print("\n" + "=" * 80)
print(" Demo complete!")
print("=" * 80)
