"""
serpy serializers.

The *RecordSerializer classes produce the snake_case documents the file
registry stores; the others produce the camelCase shapes handed to callers
(status polls, result pages, reports).
"""

import serpy


class DateTimeField(serpy.Field):
    """ISO-8601 string for datetime attributes"""

    def to_value(self, value):
        return value.isoformat()


class ProgressSerializer(serpy.Serializer):
    current = serpy.IntField()
    total = serpy.IntField()
    percentage = serpy.IntField()


class JobRecordSerializer(serpy.Serializer):
    """Storage form of a job; read back with Job.from_dict"""
    id = serpy.StrField()
    url = serpy.StrField()
    status = serpy.StrField()
    phase = serpy.StrField(required=False)
    settings = serpy.MethodField()
    progress = ProgressSerializer()
    created_at = DateTimeField()
    started_at = DateTimeField(required=False)
    completed_at = DateTimeField(required=False)
    error_message = serpy.StrField(required=False)
    is_smart_crawl = serpy.BoolField()

    def get_settings(self, job):
        return job.settings.to_dict()


class DiscoveredLinkRecordSerializer(serpy.Serializer):
    job_id = serpy.StrField()
    url = serpy.StrField()
    source_url = serpy.StrField(required=False)
    depth = serpy.IntField()
    is_internal = serpy.BoolField()
    link_text = serpy.StrField(required=False)
    status = serpy.StrField()
    http_status_code = serpy.IntField(required=False)
    response_time = serpy.IntField(required=False)
    checked_at = DateTimeField(required=False)
    is_working = serpy.BoolField(required=False)
    error_message = serpy.StrField(required=False)
    error_type = serpy.StrField(required=False)


class BrokenLinkRecordSerializer(serpy.Serializer):
    job_id = serpy.StrField()
    url = serpy.StrField()
    source_url = serpy.StrField(required=False)
    status_code = serpy.IntField(required=False)
    error_type = serpy.StrField()
    link_text = serpy.StrField(required=False)
    created_at = DateTimeField()


class JobSerializer(serpy.Serializer):
    id = serpy.StrField()
    url = serpy.StrField()
    status = serpy.StrField()
    phase = serpy.StrField(required=False)
    settings = serpy.MethodField()
    progress = ProgressSerializer()
    created_at = DateTimeField(label='createdAt')
    started_at = DateTimeField(label='startedAt', required=False)
    completed_at = DateTimeField(label='completedAt', required=False)
    error_message = serpy.StrField(label='errorMessage', required=False)
    is_smart_crawl = serpy.BoolField(label='isSmartCrawl')

    def get_settings(self, job):
        return job.settings.to_dict()


class DiscoveredLinkSerializer(serpy.Serializer):
    url = serpy.StrField()
    source_url = serpy.StrField(label='sourceUrl', required=False)
    depth = serpy.IntField()
    is_internal = serpy.BoolField(label='isInternal')
    link_text = serpy.StrField(label='linkText', required=False)
    status = serpy.StrField()
    http_status_code = serpy.IntField(label='httpStatusCode', required=False)
    response_time = serpy.IntField(label='responseTime', required=False)
    checked_at = DateTimeField(label='checkedAt', required=False)
    is_working = serpy.BoolField(label='isWorking', required=False)
    error_type = serpy.StrField(label='errorType', required=False)
    error_message = serpy.StrField(label='errorMessage', required=False)


class BrokenLinkSerializer(serpy.Serializer):
    url = serpy.StrField()
    source_url = serpy.StrField(label='sourceUrl', required=False)
    status_code = serpy.IntField(label='statusCode', required=False)
    error_type = serpy.StrField(label='errorType')
    link_text = serpy.StrField(label='linkText', required=False)
    created_at = DateTimeField(label='createdAt')


class CheckResultSerializer(serpy.Serializer):
    url = serpy.StrField()
    source_url = serpy.StrField(label='sourceUrl', required=False)
    link_text = serpy.StrField(label='linkText', required=False)
    is_working = serpy.BoolField(label='isWorking')
    status_code = serpy.IntField(label='statusCode', required=False)
    response_time = serpy.IntField(label='responseTime')
    error_type = serpy.StrField(label='errorType', required=False)
    error_message = serpy.StrField(label='errorMessage', required=False)
    checked_at = DateTimeField(label='checkedAt')
    attempts = serpy.IntField()


class StatusProgressSerializer(ProgressSerializer):
    estimated_time_remaining = serpy.IntField(label='estimatedTimeRemaining', required=False)


class StatusStatsSerializer(serpy.Serializer):
    broken_links_found = serpy.IntField(label='brokenLinksFound')
    total_links_discovered = serpy.IntField(label='totalLinksDiscovered')
    links_checked = serpy.IntField(label='linksChecked')


class StatusTimestampsSerializer(serpy.Serializer):
    created_at = DateTimeField(label='createdAt')
    completed_at = DateTimeField(label='completedAt', required=False)
    elapsed_time = serpy.IntField(label='elapsedTime')


class JobStatusSerializer(serpy.Serializer):
    """Status poll response"""
    job_id = serpy.StrField(label='jobId')
    url = serpy.StrField()
    status = serpy.StrField()
    phase = serpy.StrField(required=False)
    progress = StatusProgressSerializer()
    stats = StatusStatsSerializer()
    timestamps = StatusTimestampsSerializer()
    settings = serpy.Field()
    error_message = serpy.StrField(label='errorMessage', required=False)


class ContentPageSerializer(serpy.Serializer):
    """A page the analyzer classified as content; accepted as a pre-analyzed URL"""
    url = serpy.StrField()
    title = serpy.StrField()
    source_url = serpy.StrField(label='sourceUrl', required=False)
    depth = serpy.IntField()
    score = serpy.MethodField()
    confidence = serpy.StrField()
    word_count = serpy.IntField(label='wordCount')

    def get_score(self, page):
        return round(page.score, 2)


class FilteredPageSerializer(serpy.Serializer):
    url = serpy.StrField()
    type = serpy.StrField()
    error = serpy.StrField(required=False)


class StateObject:
    """Attribute access over a plain dict, for serializing assembled responses"""

    def __init__(self, data):
        for key, value in data.items():
            setattr(self, key, value)
