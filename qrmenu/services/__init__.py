"""
                        Services Module

Order core services:
    - lifecycle: status state machine (pure)
    - store: order persistence with per-order write serialisation
    - gateways: order intake and status update entry points
    - realtime: connection groups, session routing and event broadcast
    - excel_manager: history ledger of finished orders
"""
