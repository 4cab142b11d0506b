"""
Proof Worker - asynchronous proof PDF generation for print orders

This package turns an order into a customer-facing proof PDF ready for
approval. It combines customer artwork, product mockups rendered by
Dynamic Mockups, and order metadata:

- Mockup template resolution per product SKU with a configured default
- Vector artwork rasterization for the rendering service
- File assembly with selected-mockup precedence and raw-artwork fallback
- Content-addressed rehosting of rendered mockups
- HTML-to-PDF rendering with headless Chromium
- Queued execution on a bounded worker pool with bounded retries

Key Components:
    - main: FastAPI application and HTTP endpoint definitions
    - job_manager: Job queue, worker pool and retry policy
    - pipeline: The proof job pipeline (load, assemble, render, upload, persist)
    - assembly: Proof file assembly and automatic mockup rendering
    - resolution: Mockup template/slot resolution
    - artwork: Vector artwork normalization
    - dynamic_mockups: Rendering service client
    - renderer: Proof HTML template and PDF backend
    - storage: S3-compatible artifact store adapter
    - database: SQLite persistence for orders, mockups and proofs
    - configuration: Config loading and merging logic

Usage:
    Run the API server and workers with:
        uvicorn proof_worker.main:app --host 0.0.0.0 --port 4001
"""
