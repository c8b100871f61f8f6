"""
Deployment skew protection for Django services.

During a rolling release, requests from one browser session may be answered by
different backend versions. `skew_protection` pins each session to the
deployment that served its first request, using the `__vdpl` cookie that the
routing layer reads to dispatch the request, and keeps browser caching within
the lifetime of that pin.

Add `skew_protection.middleware.SkewProtectionMiddleware` to `MIDDLEWARE` and
configure the current deployment with `SKEW_PROTECTION_DEPLOYMENT_ID` (or the
`DEPLOYMENT_ID` environment variable). Without a deployment identifier the
middleware pins nothing.
"""
