"""Unit tests for monitoring metrics"""

from prometheus_client import REGISTRY

from dex_indexer.monitoring import metrics


class TestMetricsEmission:
    """Test that metrics are properly emitted"""

    def test_sync_last_block_height_emission(self):
        """Test sync_last_block_height gauge emission"""
        metrics.sync_last_block_height.set(1234)

        metric_output = metrics.get_metrics().decode('utf-8')
        assert 'sync_last_block_height 1234.0' in metric_output

    def test_sync_txs_skipped_emission(self):
        """Test sync_txs_skipped counter emission"""
        before = REGISTRY.get_sample_value('sync_txs_skipped_total', {'reason': 'failed'}) or 0.0

        metrics.sync_txs_skipped.labels(reason="failed").inc()

        after = REGISTRY.get_sample_value('sync_txs_skipped_total', {'reason': 'failed'})
        assert after == before + 1

    def test_sync_page_latency_emission(self):
        """Test sync_page_latency histogram emission"""
        metrics.sync_page_latency.labels(mode="catch_up").observe(0.3)

        metric_output = metrics.get_metrics().decode('utf-8')
        assert 'sync_page_latency_seconds_count{mode="catch_up"}' in metric_output

    def test_upstream_errors_emission(self):
        """Test upstream_errors counter emission"""
        metrics.upstream_errors.labels(endpoint="tx_search", error_type="UpstreamError").inc()

        metric_output = metrics.get_metrics().decode('utf-8')
        assert 'upstream_errors_total{endpoint="tx_search",error_type="UpstreamError"}' in metric_output

    def test_derived_rows_written_emission(self):
        """Test derived_rows_written counter emission"""
        metrics.derived_rows_written.labels(table="derived_tx_price_data").inc()

        metric_output = metrics.get_metrics().decode('utf-8')
        assert 'derived_rows_written_total{table="derived_tx_price_data"}' in metric_output

    def test_query_cache_requests_emission(self):
        """Test query_cache_requests counter emission"""
        before = REGISTRY.get_sample_value(
            'query_cache_requests_total', {'segment': 'price', 'result': 'hit'}
        ) or 0.0

        metrics.query_cache_requests.labels(segment="price", result="hit").inc()

        after = REGISTRY.get_sample_value('query_cache_requests_total', {'segment': 'price', 'result': 'hit'})
        assert after == before + 1

    def test_live_connections_gauge(self):
        """Test live_connections_active gauge moves both ways"""
        gauge = metrics.live_connections_active.labels(mechanism="sse")
        gauge.inc()
        gauge.dec()

        value = REGISTRY.get_sample_value('live_connections_active', {'mechanism': 'sse'})
        assert value is not None

    def test_api_requests_emission(self):
        """Test api_requests_total counter emission"""
        metrics.api_requests_total.labels(
            endpoint="/timeseries/price/{token_a}/{token_b}",
            method="GET",
            status=200
        ).inc()

        metric_output = metrics.get_metrics().decode('utf-8')
        assert 'api_requests_total{endpoint="/timeseries/price/{token_a}/{token_b}",method="GET",status="200"}' in metric_output


def test_get_content_type():
    """Test Prometheus content type"""
    assert metrics.get_content_type().startswith("text/plain")
