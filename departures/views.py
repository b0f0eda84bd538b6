from django.http import HttpResponse, JsonResponse
from django.shortcuts import render
from django.views.decorators.cache import never_cache
from django.views.decorators.http import require_http_methods

from .gtfs_service import configured_selector, get_next_departures
from .schedule import NO_DATA, Departures, OutOfService

OUT_OF_SERVICE_TEXT = "Out of service"
UNAVAILABLE_TEXT = "Data unavailable"


def _display_lines(result):
    """Two display lines for a resolver result."""
    if isinstance(result, Departures):
        return result.labels(2)
    if isinstance(result, OutOfService):
        return [OUT_OF_SERVICE_TEXT, NO_DATA]
    return [UNAVAILABLE_TEXT, NO_DATA]


def _status_code(result):
    return 200 if isinstance(result, (Departures, OutOfService)) else 503


@require_http_methods(["GET"])
def health(request):
    """Liveness check for the hosting platform."""
    return HttpResponse("ok", content_type="text/plain")


@never_cache
@require_http_methods(["GET"])
def next_text(request):
    """Next two departures as two plain text lines."""
    result, _, _ = get_next_departures()
    return HttpResponse(
        "\n".join(_display_lines(result)),
        content_type="text/plain; charset=utf-8",
        status=_status_code(result),
    )


@never_cache
@require_http_methods(["GET"])
def panel(request):
    """Station-style display panel"""
    selector = configured_selector()
    result, instant, snapshot = get_next_departures(selector=selector)
    line1, line2 = _display_lines(result)
    context = {
        'line1': line1,
        'line2': line2,
        'route_id': selector.route_id,
        'direction_id': selector.direction_id,
        'stop_id': selector.stop_id,
        'service_date': instant.date,
        'feed_version': snapshot.version if snapshot else None,
    }
    return render(request, 'departures/panel.html', context, status=_status_code(result))


@never_cache
@require_http_methods(["GET"])
def api_next(request):
    """Return the next departures for the configured route as JSON."""
    selector = configured_selector(
        direction_id=request.GET.get('direction') or None,
        stop_id=request.GET.get('stop') or None,
    )
    result, instant, snapshot = get_next_departures(selector=selector)

    if isinstance(result, Departures):
        status = 'ok'
        reason = ''
    elif isinstance(result, OutOfService):
        status = 'out_of_service'
        reason = result.reason
    else:
        status = 'unavailable'
        reason = result.reason

    departures = result.departures if isinstance(result, Departures) else ()
    return JsonResponse({
        'status': status,
        'route_id': selector.route_id,
        'direction_id': selector.direction_id,
        'stop_id': selector.stop_id,
        'service_date': instant.ymd,
        'feed_version': snapshot.version if snapshot else None,
        'departures': [
            {'seconds': d.seconds, 'delta_seconds': d.delta_seconds, 'label': d.label}
            for d in departures
        ],
        'reason': reason,
    }, status=_status_code(result))
