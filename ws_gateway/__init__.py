"""
WebSocket Gateway: the live service sync protocol.

Run with:
    uvicorn ws_gateway.main:app --port 8001
"""
