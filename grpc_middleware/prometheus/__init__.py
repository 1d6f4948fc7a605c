"""Prometheus-style counters and histograms, client and server metric sets, and per-call reporters."""