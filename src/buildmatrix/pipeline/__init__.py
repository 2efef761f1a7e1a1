"""
Build-and-dependency orchestration.

Modules, leaves first:
- config / models / errors: pipeline description and records
- matrix: platform x triple expansion, branch gate, artifact plan
- fetcher: one-shot artifact retrieval
- stager: installer execution and triple-keyed placement
- composer: per-job environment value
- runner: build then test
- driver: parallel jobs, aggregate report
"""
