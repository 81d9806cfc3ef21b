"""
Builders for YouTube Data API payloads used across the tests.
"""
from unittest.mock import MagicMock

from googleapiclient.errors import HttpError


def video_item(video_id, title="Python Tutorial", views="1000", likes="50", privacy="public",
               embeddable=True, live="none", description="", region_restriction=None,
               yt_rating=None, channel="Channel"):
    """A videos.list item that passes every hard rule unless told otherwise."""
    item = {
        "id": video_id,
        "snippet": {
            "title": title,
            "description": description,
            "channelTitle": channel,
            "liveBroadcastContent": live,
            "thumbnails": {"high": {"url": f"https://i.ytimg.com/vi/{video_id}/hqdefault.jpg"}},
        },
        "status": {"privacyStatus": privacy, "embeddable": embeddable},
        "statistics": {"viewCount": views, "likeCount": likes},
        "contentDetails": {},
    }
    if region_restriction is not None:
        item["contentDetails"]["regionRestriction"] = region_restriction
    if yt_rating is not None:
        item["contentDetails"]["contentRating"] = {"ytRating": yt_rating}
    return item


def search_response(*video_ids):
    return {"items": [{"id": {"kind": "youtube#video", "videoId": vid}} for vid in video_ids]}


def mock_youtube_resource(search_body=None, videos_body=None, search_error=None, videos_error=None):
    """MagicMock shaped like googleapiclient's youtube resource.

    resource.search().list(**params).execute(http=...) returns search_body or
    raises search_error; same for videos().
    """
    resource = MagicMock()
    search_request = resource.search.return_value.list.return_value
    videos_request = resource.videos.return_value.list.return_value
    if search_error is not None:
        search_request.execute.side_effect = search_error
    else:
        search_request.execute.return_value = search_body if search_body is not None else {"items": []}
    if videos_error is not None:
        videos_request.execute.side_effect = videos_error
    else:
        videos_request.execute.return_value = videos_body if videos_body is not None else {"items": []}
    return resource


def http_error(status, reason=""):
    """googleapiclient HttpError with the given status and error reason in the body."""
    resp = MagicMock()
    resp.status = status
    resp.reason = "error"
    content = ('{"error": {"message": "error", "errors": [{"reason": "%s"}]}}' % reason).encode("utf-8")
    return HttpError(resp, content)
