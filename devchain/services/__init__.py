"""
devchain.services — orchestration on top of the devnet and adapters.

- deploy:  DeploymentPipeline (build, estimate, submit, signed receipt)
- verify:  VerificationEngine (rebuild, fetch on-chain hash, compare)
- retry:   call_with_retry (bounded backoff for transient errors), run_bounded
"""
